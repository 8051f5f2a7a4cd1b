"""Common utility functions."""

from .geo import calculate_distance, distance_to_point

__all__ = [
    "calculate_distance",
    "distance_to_point",
]
