import threading
import unittest
from unittest.mock import MagicMock, patch

import numpy as np
import torch

from torchaugment.augment.session import AugmentationSession
from torchaugment.camera.base import BaseCamera
from torchaugment.config import AugmentConfig
from torchaugment.errors import (
    AllocationFailureError,
    CameraTimeoutError,
    InsufficientSeedKeypointsError,
    InvalidHandleError,
    NoSurfaceCapacityError,
    NotInitializedError,
)
from torchaugment.frontend.feature_extraction import (
    DESCRIPTOR_SIZE,
    BaseFeatureExtractor,
    KeyPoint,
)
from torchaugment.frontend.regions import BaseRegionDetector, Region
from torchaugment.frontend.tracking import SurfaceStatus, TrackedSurface, TrackingFailure


class FakeFeatureExtractor(BaseFeatureExtractor):
    """Returns a fixed keypoint list and counts detector runs."""

    def __init__(self, keypoints=None):
        super().__init__()
        self.keypoints = keypoints or []
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        return list(self.keypoints)


class FakeRegionDetector(BaseRegionDetector):
    def __init__(self, regions=None):
        self.regions = regions or []
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        return list(self.regions)


def make_keypoints():
    """20 keypoints with distinct random descriptors inside the unit disc."""
    generator = torch.Generator().manual_seed(2024)
    return [
        KeyPoint(x=x, y=y, descriptor=torch.rand(DESCRIPTOR_SIZE, generator=generator))
        for x in (-0.5, -0.25, 0.0, 0.25, 0.5)
        for y in (-0.3, -0.1, 0.1, 0.3)
    ]


def shifted(keypoints, tx, ty):
    return [kp.moved_to(kp.x + tx, kp.y + ty) for kp in keypoints]


# Unit circle around the origin: model coordinates equal frame coordinates
SEED_REGION = Region(0.0, 0.0, 1.0, 1.0)


class TestAugmentationSession(unittest.TestCase):
    def setUp(self):
        self.camera = MagicMock(spec=BaseCamera)
        self.camera.acquire_frame.return_value = np.zeros((240, 320, 3), dtype=np.uint8)

        self.seed_keypoints = make_keypoints()
        self.extractor = FakeFeatureExtractor(self.seed_keypoints)
        self.region_detector = FakeRegionDetector([SEED_REGION])

        self.session = AugmentationSession(
            self.camera, self.extractor, self.region_detector, AugmentConfig()
        )
        self.session.start_capture()
        self.session.start_augmentation()

    def create_tracked_surface(self):
        self.session.update_all()
        return self.session.create_surface(SEED_REGION)

    def assert_translation(self, handle, tx, ty):
        expected = torch.tensor(
            [[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]], dtype=torch.float64
        )
        self.assertTrue(
            torch.allclose(self.session.get_transform(handle), expected, atol=1e-6)
        )

    def test_initialization(self):
        session = AugmentationSession(self.camera, self.extractor)
        self.assertEqual(session.config, AugmentConfig())
        self.assertEqual(session.frame_idx, 0)
        self.assertFalse(session.is_capturing)
        self.assertFalse(session.is_augmenting)
        self.assertEqual(session.handles(), [])

    def test_initialization_from_dict(self):
        session = AugmentationSession(
            self.camera, self.extractor, config={"session": {"max_surfaces": 2}}
        )
        self.assertEqual(session.config.max_surfaces, 2)

    def test_update_requires_capture(self):
        session = AugmentationSession(self.camera, self.extractor)
        with self.assertRaises(NotInitializedError):
            session.update_all()

    def test_queries_require_frame(self):
        session = AugmentationSession(self.camera, self.extractor, self.region_detector)
        with self.assertRaises(NotInitializedError):
            session.get_regions()
        with self.assertRaises(NotInitializedError):
            session.get_keypoints()
        with self.assertRaises(NotInitializedError):
            session.create_surface(SEED_REGION)

    def test_regions_require_detector(self):
        session = AugmentationSession(self.camera, self.extractor)
        session.start_capture()
        session.update_all()
        with self.assertRaises(NotInitializedError):
            session.get_regions()

    def test_new_surface_starts_created(self):
        handle = self.create_tracked_surface()

        self.assertEqual(handle, 0)
        self.assertEqual(self.session.get_status(handle), SurfaceStatus.CREATED)
        self.assertEqual(self.session.get_failure(handle), TrackingFailure.NONE)
        zero = torch.zeros(3, 3, dtype=torch.float64)
        self.assertTrue(torch.equal(self.session.get_transform(handle), zero))
        self.assertEqual(len(self.session.get_surface(handle).model), 20)

    def test_translation_is_recovered(self):
        handle = self.create_tracked_surface()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)

        statuses = self.session.update_all()

        self.assertEqual(statuses, {handle: SurfaceStatus.TRACKING})
        self.assert_translation(handle, 5.0, -3.0)

        x, y = self.session.transform_point(handle, 0.0, 0.0)
        self.assertAlmostEqual(x, 5.0, places=6)
        self.assertAlmostEqual(y, -3.0, places=6)
        x, y = self.session.untransform_point(handle, 5.0, -3.0)
        self.assertAlmostEqual(x, 0.0, places=6)
        self.assertAlmostEqual(y, 0.0, places=6)

        gl = self.session.get_gl_matrix(handle)
        self.assertAlmostEqual(gl[12], 5.0, places=6)
        self.assertAlmostEqual(gl[13], -3.0, places=6)
        self.assertAlmostEqual(gl[15], 1.0)

    def test_repeated_update_is_idempotent(self):
        handle = self.create_tracked_surface()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)

        self.session.update_all()
        first = self.session.get_transform(handle)
        self.session.update_all()
        second = self.session.get_transform(handle)

        self.assertTrue(torch.allclose(first, second, atol=1e-12))
        self.assertEqual(len(self.session.get_surface(handle).model), 20)

    def test_large_motion_recovered_by_whole_frame_search(self):
        handle = self.create_tracked_surface()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)
        self.session.update_all()

        # Far outside the previous window
        self.extractor.keypoints = shifted(self.seed_keypoints, 40.0, 25.0)
        statuses = self.session.update_all()

        self.assertEqual(statuses[handle], SurfaceStatus.TRACKING)
        self.assert_translation(handle, 40.0, 25.0)

    def test_seed_requires_enough_keypoints(self):
        self.extractor.keypoints = self.seed_keypoints[:9]
        self.session.update_all()

        with self.assertRaises(InsufficientSeedKeypointsError) as context:
            self.session.create_surface(SEED_REGION)

        self.assertEqual(context.exception.found, 9)
        self.assertEqual(context.exception.required, 10)
        self.assertEqual(self.session.handles(), [])

        # The failed attempt did not use up a handle
        self.extractor.keypoints = self.seed_keypoints
        self.session.update_all()
        self.assertEqual(self.session.create_surface(SEED_REGION), 0)

    def test_keypoints_outside_region_not_seeded(self):
        self.session.update_all()
        small = Region(0.0, 0.0, 0.2, 0.2)

        with self.assertRaises(InsufficientSeedKeypointsError) as context:
            self.session.create_surface(small)
        self.assertEqual(context.exception.found, 2)

    def test_degenerate_region_rejected(self):
        self.session.update_all()

        with self.assertRaises(InsufficientSeedKeypointsError) as context:
            self.session.create_surface(Region(0.0, 0.0, 0.0, 0.0))

        self.assertEqual(context.exception.found, 0)
        self.assertEqual(context.exception.required, 10)
        self.assertEqual(self.session.handles(), [])

    def test_queries_wait_for_session_lock(self):
        handle = self.create_tracked_surface()
        locked = threading.Event()
        unlock = threading.Event()
        statuses = []

        def hold_lock():
            with self.session._lock:
                locked.set()
                unlock.wait(2.0)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        locked.wait(2.0)

        reader = threading.Thread(
            target=lambda: statuses.append(self.session.get_status(handle))
        )
        reader.start()
        reader.join(timeout=0.1)

        # The query blocks while another thread holds the session
        self.assertTrue(reader.is_alive())
        self.assertEqual(statuses, [])

        unlock.set()
        holder.join(timeout=2.0)
        reader.join(timeout=2.0)
        self.assertEqual(statuses, [SurfaceStatus.CREATED])

    def test_surface_capacity(self):
        self.session.update_all()
        handles = [self.session.create_surface(SEED_REGION) for _ in range(32)]

        self.assertEqual(handles, list(range(32)))
        with self.assertRaises(NoSurfaceCapacityError):
            self.session.create_surface(SEED_REGION)

    def test_released_handle_is_reused(self):
        self.session.update_all()
        for _ in range(4):
            self.session.create_surface(SEED_REGION)
        surface = self.session.get_surface(2)

        self.session.release_surface(2)

        self.assertEqual(surface.status, SurfaceStatus.RELEASED)
        self.assertEqual(self.session.handles(), [0, 1, 3])
        self.assertEqual(self.session.create_surface(SEED_REGION), 2)

    def test_invalid_handle(self):
        with self.assertRaises(InvalidHandleError):
            self.session.get_transform(0)
        with self.assertRaises(KeyError):
            self.session.release_surface(5)
        with self.assertRaises(InvalidHandleError):
            self.session.transform_point(40, 0.0, 0.0)

    def test_minimum_matches_boundary(self):
        handle = self.create_tracked_surface()

        self.extractor.keypoints = shifted(self.seed_keypoints[:4], 5.0, -3.0)
        with self.assertLogs("AugmentationSession", level="WARNING"):
            statuses = self.session.update_all()
        self.assertEqual(statuses[handle], SurfaceStatus.LOST)
        self.assertEqual(
            self.session.get_failure(handle), TrackingFailure.INSUFFICIENT_MATCHES
        )
        # Previous transform retained
        self.assertTrue(self.session.get_surface(handle).forward.is_zero())

        self.extractor.keypoints = shifted(self.seed_keypoints[:5], 5.0, -3.0)
        statuses = self.session.update_all()
        self.assertEqual(statuses[handle], SurfaceStatus.TRACKING)
        self.assertEqual(self.session.get_failure(handle), TrackingFailure.NONE)
        self.assert_translation(handle, 5.0, -3.0)

    def test_implausible_transform_keeps_previous(self):
        handle = self.create_tracked_surface()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)
        self.session.update_all()

        self.extractor.keypoints = [
            kp.moved_to(kp.x * 2000.0, kp.y) for kp in self.seed_keypoints
        ]
        statuses = self.session.update_all()

        self.assertEqual(statuses[handle], SurfaceStatus.LOST)
        self.assertEqual(
            self.session.get_failure(handle), TrackingFailure.IMPLAUSIBLE_TRANSFORM
        )
        self.assert_translation(handle, 5.0, -3.0)

    def test_camera_timeout_skips_frame(self):
        handle = self.create_tracked_surface()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)
        self.session.update_all()
        frame_idx = self.session.frame_idx

        self.camera.acquire_frame.side_effect = CameraTimeoutError("timed out")
        with self.assertRaises(CameraTimeoutError):
            self.session.update_all()

        self.assertEqual(self.session.frame_idx, frame_idx)
        self.assertEqual(self.session.get_status(handle), SurfaceStatus.TRACKING)
        self.assert_translation(handle, 5.0, -3.0)

    def test_stop_augmentation_freezes_surfaces(self):
        handle = self.create_tracked_surface()
        self.session.stop_augmentation()
        self.extractor.keypoints = shifted(self.seed_keypoints, 5.0, -3.0)
        calls = self.extractor.calls

        statuses = self.session.update_all()

        self.assertEqual(statuses[handle], SurfaceStatus.CREATED)
        self.assertEqual(self.extractor.calls, calls)
        # Keypoints are still available for selection
        self.assertEqual(len(self.session.get_keypoints()), 20)

        self.session.start_augmentation()
        self.session.update_all()
        self.assert_translation(handle, 5.0, -3.0)

    def test_detector_output_cached_per_frame(self):
        self.session.update_all()

        self.session.get_regions()
        self.session.get_regions()
        self.session.get_keypoints()
        self.session.create_surface(SEED_REGION)
        self.assertEqual(self.region_detector.calls, 1)
        self.assertEqual(self.extractor.calls, 1)

        self.session.update_all()
        self.session.get_regions()
        self.session.get_keypoints()
        self.assertEqual(self.region_detector.calls, 2)
        self.assertEqual(self.extractor.calls, 2)

    def test_allocation_failure(self):
        self.session.update_all()

        with patch.object(TrackedSurface, "seed", side_effect=MemoryError("oom")):
            with self.assertRaises(AllocationFailureError) as context:
                self.session.create_surface(SEED_REGION)

        self.assertIsInstance(context.exception, MemoryError)
        self.assertEqual(self.session.handles(), [])

    def test_context_manager(self):
        camera = MagicMock(spec=BaseCamera)
        camera.acquire_frame.return_value = np.zeros((240, 320, 3), dtype=np.uint8)

        with AugmentationSession(camera, self.extractor) as session:
            self.assertTrue(session.is_capturing)
            self.assertTrue(session.is_augmenting)
            session.update_all()
            handle = session.create_surface(SEED_REGION)
            surface = session.get_surface(handle)

        camera.start.assert_called_once()
        camera.stop.assert_called_once()
        self.assertEqual(surface.status, SurfaceStatus.RELEASED)
        self.assertEqual(session.handles(), [])
        self.assertFalse(session.is_capturing)


if __name__ == "__main__":
    unittest.main()
