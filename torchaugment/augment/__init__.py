"""
Augmentation module for the augmentation library.

This module contains the session that drives surface tracking frame by frame
and the fixed-capacity table holding the tracked surfaces.
"""

from .session import AugmentationSession, FrameCache
from .surface import SurfaceTable

__all__ = [
    "AugmentationSession",
    "FrameCache",
    "SurfaceTable",
]
