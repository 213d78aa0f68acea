"""
PyTorch Augment Library

A PyTorch-based library for markerless augmented reality on planar surfaces.
A surface is selected from a region proposed in the camera image and then
followed from frame to frame with an affine transform, so that overlays can
be drawn on it.

Major Components:
- Frontend: Keypoint detection and matching, region detection, surface tracking
- Backend: Affine transform estimation
- Camera: Threaded frame sources
- Augment: The session driving all tracked surfaces

Descriptor storage and the least-squares estimation run on PyTorch tensors.
"""
# Import augment components
from torchaugment.augment import AugmentationSession, SurfaceTable

# Import backend components
from torchaugment.backend import AffineEstimator, AffineTransform

# Import camera components
from torchaugment.camera import BaseCamera, OpenCVCamera

# Import configuration
from torchaugment.config import AugmentConfig, load_config
from torchaugment.errors import (
    AllocationFailureError,
    AugmentError,
    CameraInterruptedError,
    CameraIOError,
    CameraTimeoutError,
    ConfigError,
    FrameSkippedError,
    ImplausibleTransformError,
    InsufficientMatchesError,
    InsufficientSeedKeypointsError,
    InvalidHandleError,
    NoSurfaceCapacityError,
    NotInitializedError,
)

# Import frontend components
from torchaugment.frontend import BaseRegionDetector, MSERRegionDetector, Region
from torchaugment.frontend.feature_extraction import (
    BaseFeatureExtractor,
    DescriptorMatcher,
    KeyPoint,
    SIFTFeatureExtractor,
)
from torchaugment.frontend.tracking import SurfaceStatus, TrackedSurface, TrackingFailure

# Version information
from torchaugment.version import __version__

# Define the public API
__all__ = [
    # Session
    "AugmentationSession",
    "SurfaceTable",
    "AugmentConfig",
    "load_config",
    # Frontend
    "KeyPoint",
    "BaseFeatureExtractor",
    "SIFTFeatureExtractor",
    "DescriptorMatcher",
    "Region",
    "BaseRegionDetector",
    "MSERRegionDetector",
    "TrackedSurface",
    "SurfaceStatus",
    "TrackingFailure",
    # Backend
    "AffineTransform",
    "AffineEstimator",
    # Camera
    "BaseCamera",
    "OpenCVCamera",
    # Errors
    "AugmentError",
    "ConfigError",
    "NotInitializedError",
    "InvalidHandleError",
    "InsufficientSeedKeypointsError",
    "NoSurfaceCapacityError",
    "InsufficientMatchesError",
    "ImplausibleTransformError",
    "AllocationFailureError",
    "CameraIOError",
    "FrameSkippedError",
    "CameraTimeoutError",
    "CameraInterruptedError",
    "__version__",
]
