# src/core/geo/__init__.py
"""
Геоматематика: расстояние по большому кругу и ETA.
"""

from src.core.geo.distance import distance_km, eta_minutes

__all__ = [
    "distance_km",
    "eta_minutes",
]
