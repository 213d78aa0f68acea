"""
Tracking module for the augmentation library.

This module contains the tracked surface state, the correspondence builder
that locates a surface model in a new frame and the maintainer that grows
the model from keypoints seen on consecutive frames.
"""

from .base import SurfaceStatus, TrackedSurface, TrackingFailure
from .correspondence import Correspondence, CorrespondenceBuilder, CorrespondenceSet
from .model import CandidateSet, MaintenanceResult, ModelKeypointSet, ModelMaintainer

__all__ = [
    "SurfaceStatus",
    "TrackingFailure",
    "TrackedSurface",
    "Correspondence",
    "CorrespondenceSet",
    "CorrespondenceBuilder",
    "ModelKeypointSet",
    "CandidateSet",
    "ModelMaintainer",
    "MaintenanceResult",
]
