"""
Frontend module for the augmentation library.

This module contains the per-frame components: keypoint detection and
matching, surface region detection and tracking of surfaces across frames.
"""

from .regions import BaseRegionDetector, MSERRegionDetector, Region, ellipse_from_points

__all__ = [
    "Region",
    "BaseRegionDetector",
    "MSERRegionDetector",
    "ellipse_from_points",
]
