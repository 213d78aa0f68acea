"""
Exception hierarchy for the augmentation library.

Failures local to one tracked surface are recorded on the surface and never
raised out of the per-frame update; everything else is raised to the caller
of the failing operation.
"""


class AugmentError(Exception):
    """Base class for all augmentation errors."""


class ConfigError(AugmentError, ValueError):
    """Invalid configuration value or unreadable configuration file."""


class NotInitializedError(AugmentError):
    """Operation requires a started session or an acquired frame."""


class InvalidHandleError(AugmentError, KeyError):
    """No active surface exists for the given handle."""

    def __init__(self, handle: int):
        super().__init__(f"Surface {handle} does not exist")
        self.handle = handle

    def __str__(self) -> str:
        return self.args[0]


class InsufficientSeedKeypointsError(AugmentError):
    """Too few keypoints inside a region to create a surface."""

    def __init__(self, found: int, required: int):
        super().__init__(
            f"Only {found} keypoints inside region, {required} required"
        )
        self.found = found
        self.required = required


class NoSurfaceCapacityError(AugmentError):
    """Every surface slot is in use."""


class InsufficientMatchesError(AugmentError):
    """Too few correspondences to estimate a transform."""


class ImplausibleTransformError(InsufficientMatchesError):
    """An estimated transform failed the skew/scale plausibility check."""


class AllocationFailureError(AugmentError, MemoryError):
    """Memory for a surface could not be allocated."""


class CameraIOError(AugmentError, IOError):
    """The camera could not be opened or stopped delivering frames."""


class FrameSkippedError(AugmentError):
    """No frame was acquired; the current update is skipped."""


class CameraTimeoutError(FrameSkippedError):
    """Timed out waiting for a camera frame."""


class CameraInterruptedError(FrameSkippedError):
    """Frame acquisition was interrupted."""
