import threading
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

from torchaugment.camera.opencv import OpenCVCamera
from torchaugment.errors import (
    CameraInterruptedError,
    CameraIOError,
    CameraTimeoutError,
    FrameSkippedError,
)


def make_capture(read):
    capture = MagicMock()
    capture.isOpened.return_value = True
    capture.get.side_effect = lambda prop: {3: 320.0, 4: 240.0}.get(prop, 0.0)
    capture.read.side_effect = read
    return capture


class TestOpenCVCamera(unittest.TestCase):
    def setUp(self):
        # BGR frame with a pure blue first pixel
        self.bgr = np.zeros((240, 320, 3), dtype=np.uint8)
        self.bgr[0, 0] = (255, 0, 0)
        self.release_reader = threading.Event()

    def tearDown(self):
        self.release_reader.set()

    def one_frame_then_block(self):
        calls = {"n": 0}

        def read():
            calls["n"] += 1
            if calls["n"] == 1:
                return True, self.bgr
            self.release_reader.wait()
            return False, None

        return read

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_open_failure(self, video_capture):
        capture = MagicMock()
        capture.isOpened.return_value = False
        video_capture.return_value = capture

        camera = OpenCVCamera(source="missing.mp4")
        with self.assertRaises(CameraIOError):
            camera.start()
        self.assertFalse(camera.is_running)

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_acquire_returns_rgb_then_times_out(self, video_capture):
        video_capture.return_value = make_capture(self.one_frame_then_block())
        camera = OpenCVCamera(source=0)
        camera.start()
        try:
            self.assertEqual(camera.resolution, (320, 240))

            frame = camera.acquire_frame(timeout=2.0)
            self.assertEqual(frame.shape, (240, 320, 3))
            self.assertEqual(frame[0, 0].tolist(), [0, 0, 255])

            # No newer frame arrives
            with self.assertRaises(CameraTimeoutError) as context:
                camera.acquire_frame(timeout=0.05)
            self.assertIsInstance(context.exception, FrameSkippedError)
        finally:
            self.release_reader.set()
            camera.stop()

    def test_acquire_without_start_is_interrupted(self):
        camera = OpenCVCamera(source=0)
        with self.assertRaises(CameraInterruptedError):
            camera.acquire_frame(timeout=0.01)

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_end_of_stream_raises_io_error(self, video_capture):
        video_capture.return_value = make_capture(lambda: (False, None))
        camera = OpenCVCamera(source="clip.mp4")
        camera.start()
        try:
            with self.assertRaises(CameraIOError):
                camera.acquire_frame(timeout=2.0)
        finally:
            camera.stop()

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_requested_resolution_applied(self, video_capture):
        capture = make_capture(self.one_frame_then_block())
        video_capture.return_value = capture
        camera = OpenCVCamera(source=0, resolution=(640, 480))
        camera.start()
        self.release_reader.set()
        camera.stop()

        capture.set.assert_any_call(3, 640)
        capture.set.assert_any_call(4, 480)
        capture.release.assert_called_once()

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_stop_leaves_blocked_read_to_release_source(self, video_capture):
        capture = make_capture(self.one_frame_then_block())
        video_capture.return_value = capture
        camera = OpenCVCamera(source=0, stop_timeout=0.05)
        camera.start()
        camera.acquire_frame(timeout=2.0)
        thread = camera._thread

        # The second read is still blocked when stop gives up waiting
        camera.stop()
        self.assertTrue(thread.is_alive())
        capture.release.assert_not_called()
        self.assertIsNone(camera._cap)

        self.release_reader.set()
        thread.join(timeout=2.0)
        self.assertFalse(thread.is_alive())
        capture.release.assert_called_once()
        # A read failing after stop is not a camera error
        self.assertIsNone(camera._error)

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_loop_rewinds_at_end_of_file(self, video_capture):
        reads = iter([(True, self.bgr), (False, None), (True, self.bgr)])

        def read():
            try:
                return next(reads)
            except StopIteration:
                self.release_reader.wait()
                return False, None

        capture = make_capture(read)
        video_capture.return_value = capture
        camera = OpenCVCamera(source="clip.mp4", loop=True)
        camera.start()
        try:
            camera.acquire_frame(timeout=2.0)
            camera.acquire_frame(timeout=2.0)
            capture.set.assert_any_call(1, 0)
        finally:
            self.release_reader.set()
            camera.stop()

    @patch("torchaugment.camera.opencv.cv2.VideoCapture")
    def test_loop_failed_rewind_raises_io_error(self, video_capture):
        capture = make_capture(lambda: (False, None))
        video_capture.return_value = capture
        camera = OpenCVCamera(source="clip.mp4", loop=True)
        camera.start()
        try:
            with self.assertRaises(CameraIOError):
                camera.acquire_frame(timeout=2.0)
            capture.set.assert_any_call(1, 0)
            self.assertEqual(capture.read.call_count, 2)
        finally:
            camera.stop()


if __name__ == "__main__":
    unittest.main()
