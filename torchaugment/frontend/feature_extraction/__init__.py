"""
Feature extraction module for the augmentation library.

This module contains the keypoint data type, the feature detector interface
and the descriptor matcher used to find keypoints of a tracked surface in
new frames.
"""

from .base import (
    DESCRIPTOR_SIZE,
    BaseFeatureExtractor,
    KeyPoint,
    keypoint_descriptors,
    keypoint_positions,
)
from .feature_matcher import (
    DescriptorMatcher,
    Match,
    descriptor_distance,
    descriptor_distances,
)
from .sift import SIFTFeatureExtractor

__all__ = [
    "DESCRIPTOR_SIZE",
    "KeyPoint",
    "BaseFeatureExtractor",
    "SIFTFeatureExtractor",
    "DescriptorMatcher",
    "Match",
    "descriptor_distance",
    "descriptor_distances",
    "keypoint_positions",
    "keypoint_descriptors",
]
