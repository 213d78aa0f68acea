from typing import Tuple

import numpy as np


class BaseCamera:
    """Base class for frame sources.

    A camera delivers RGB uint8 frames (H, W, 3). ``acquire_frame`` waits at
    most ``timeout`` seconds and reports a skipped frame by raising
    CameraTimeoutError or CameraInterruptedError; unrecoverable failures
    raise CameraIOError."""

    def start(self):
        """Start delivering frames."""
        raise NotImplementedError("Subclasses must implement start method")

    def stop(self):
        """Stop delivering frames and wake up any waiting caller."""
        raise NotImplementedError("Subclasses must implement stop method")

    def acquire_frame(self, timeout: float = 1.0) -> np.ndarray:
        """
        Wait for the next frame.

        Args:
            timeout: Maximum wait in seconds

        Returns:
            RGB frame (H, W, 3)
        """
        raise NotImplementedError("Subclasses must implement acquire_frame method")

    @property
    def resolution(self) -> Tuple[int, int]:
        """Frame size as (width, height)."""
        raise NotImplementedError("Subclasses must implement resolution property")

    @property
    def is_running(self) -> bool:
        return False
