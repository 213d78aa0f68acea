"""
Camera module for the augmentation library.

Frame sources consumed by the augmentation session.
"""

from .base import BaseCamera
from .opencv import OpenCVCamera

__all__ = ["BaseCamera", "OpenCVCamera"]
