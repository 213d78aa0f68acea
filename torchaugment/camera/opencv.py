"""
OpenCV camera adapter.

A daemon thread reads frames from a ``cv2.VideoCapture`` and publishes the
most recent one. Callers wait for a frame newer than the last one they
received, so a slow consumer drops frames instead of lagging behind.
"""
import logging
import threading
import time
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from ..errors import CameraInterruptedError, CameraIOError, CameraTimeoutError
from .base import BaseCamera


class OpenCVCamera(BaseCamera):
    """Threaded camera backed by ``cv2.VideoCapture``."""

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Optional[Tuple[int, int]] = (320, 240),
        loop: bool = False,
        stop_timeout: float = 2.0,
    ):
        """
        Initialize OpenCV camera.

        Args:
            source: Device index, video file path or stream URL
            resolution: Requested (width, height), None for the native size
            loop: Restart video files when they reach the end
            stop_timeout: Seconds ``stop`` waits for the capture thread
        """
        self.source = source
        self.requested_resolution = resolution
        self.loop = loop
        self.stop_timeout = stop_timeout

        self._cap: Optional[cv2.VideoCapture] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._condition = threading.Condition()
        self._running = False
        self._frame: Optional[np.ndarray] = None
        self._frame_count = 0  # Frames published by the capture thread
        self._delivered = 0  # Frame count at the last acquire_frame
        self._error: Optional[Exception] = None

        self._width = 0
        self._height = 0

        self.logger = logging.getLogger(self.__class__.__name__)

    def start(self):
        """
        Open the source and start the capture thread.

        Raises:
            CameraIOError: If the source cannot be opened
        """
        if self._running:
            self.logger.warning("Camera already running")
            return

        self._cap = cv2.VideoCapture(self.source)
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise CameraIOError(f"Failed to open video source: {self.source}")

        if self.requested_resolution is not None:
            width, height = self.requested_resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        with self._condition:
            self._running = True
            self._error = None
            self._frame = None
            self._frame_count = 0
            self._delivered = 0

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._capture_loop,
            args=(self._cap, self._stop_event),
            daemon=True,
        )
        self._thread.start()
        self.logger.info(
            f"Camera started: source={self.source}, "
            f"resolution={self._width}x{self._height}"
        )

    def stop(self):
        """Stop the capture thread and release the source."""
        with self._condition:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            self._condition.notify_all()

        if self._thread is not None:
            self._thread.join(timeout=self.stop_timeout)
            if self._thread.is_alive():
                self.logger.warning(
                    "Capture thread still blocked in read, "
                    "source is released when the read returns"
                )
            self._thread = None

        self._stop_event = None
        self._cap = None

        self.logger.info(f"Camera stopped after {self._frame_count} frames")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self._width, self._height)

    def acquire_frame(self, timeout: float = 1.0) -> np.ndarray:
        """
        Wait for a frame newer than the last one returned.

        Args:
            timeout: Maximum wait in seconds

        Returns:
            RGB frame (H, W, 3)

        Raises:
            CameraTimeoutError: No new frame arrived in time
            CameraInterruptedError: The camera was stopped while waiting
            CameraIOError: The capture thread failed
        """
        deadline = time.monotonic() + timeout

        with self._condition:
            while True:
                if self._error is not None:
                    raise CameraIOError(str(self._error)) from self._error
                if not self._running:
                    raise CameraInterruptedError("Camera is not running")
                if self._frame_count > self._delivered:
                    self._delivered = self._frame_count
                    return self._frame

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise CameraTimeoutError(
                        f"No frame received within {timeout:.2f} s"
                    )
                self._condition.wait(remaining)

    def _capture_loop(self, cap: cv2.VideoCapture, stop_event: threading.Event):
        # The thread owns ``cap`` and releases it on exit, so ``stop`` never
        # pulls the capture out from under a blocked ``read``
        rewound = False
        try:
            while not stop_event.is_set():
                ret, frame = cap.read()

                if not ret:
                    # One rewind per end of stream, a second failure is fatal
                    if self.loop and isinstance(self.source, str) and not rewound:
                        cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
                        rewound = True
                        continue
                    with self._condition:
                        if not stop_event.is_set():
                            self._error = CameraIOError(
                                f"Failed to read frame from source: {self.source}"
                            )
                            self.logger.error(str(self._error))
                        self._condition.notify_all()
                    return

                rewound = False
                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                with self._condition:
                    self._frame = rgb
                    self._frame_count += 1
                    self._condition.notify_all()
        finally:
            cap.release()
