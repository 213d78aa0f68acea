"""
Backend module for the augmentation library.

Contains the affine transform type and the least-squares estimator that
turns keypoint correspondences into validated surface transforms.
"""

from .affine import (
    AffineEstimator,
    AffineTransform,
    closed_form_inverse,
    pinv_inverse,
    solve_affine,
)

__all__ = [
    "AffineTransform",
    "AffineEstimator",
    "solve_affine",
    "pinv_inverse",
    "closed_form_inverse",
]
