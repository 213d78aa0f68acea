"""
Augmentation session.

The session owns the camera, the detectors and the table of tracked
surfaces. Each call to ``update_all`` acquires one frame and, while
augmentation is running, updates every surface against it: the surface
model is matched against the frame keypoints, an affine transform is
estimated from the correspondences, and keypoints seen on two consecutive
frames are added to the model.
"""
import logging
import threading
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import torch

from ..backend.affine import AffineEstimator
from ..camera.base import BaseCamera
from ..config import AugmentConfig
from ..errors import (
    AllocationFailureError,
    FrameSkippedError,
    ImplausibleTransformError,
    InsufficientMatchesError,
    InsufficientSeedKeypointsError,
    NotInitializedError,
)
from ..frontend.feature_extraction import (
    BaseFeatureExtractor,
    DescriptorMatcher,
    KeyPoint,
)
from ..frontend.regions import BaseRegionDetector, Region
from ..frontend.tracking import (
    CorrespondenceBuilder,
    ModelMaintainer,
    SurfaceStatus,
    TrackedSurface,
    TrackingFailure,
)
from .surface import SurfaceTable


class FrameCache:
    """Current frame with its lazily computed regions and keypoints."""

    def __init__(self):
        self.frame: Optional[np.ndarray] = None
        self.frame_idx = -1
        self._regions: Optional[List[Region]] = None
        self._keypoints: Optional[List[KeyPoint]] = None

    def reset(self, frame: Optional[np.ndarray] = None, frame_idx: int = -1):
        self.frame = frame
        self.frame_idx = frame_idx
        self._regions = None
        self._keypoints = None

    @property
    def has_frame(self) -> bool:
        return self.frame is not None

    def regions(self, detector: BaseRegionDetector) -> List[Region]:
        if self._regions is None:
            self._regions = detector.detect(self.frame)
        return self._regions

    def keypoints(self, extractor: BaseFeatureExtractor) -> List[KeyPoint]:
        if self._keypoints is None:
            self._keypoints = extractor.detect(self.frame)
        return self._keypoints


class AugmentationSession:
    """
    Tracks planar surfaces across camera frames.

    Typical use::

        with AugmentationSession(camera, SIFTFeatureExtractor(),
                                 MSERRegionDetector()) as session:
            session.update_all()
            handle = session.create_surface(session.get_regions()[0])
            while True:
                session.update_all()
                gl_matrix = session.get_gl_matrix(handle)
    """

    def __init__(
        self,
        camera: BaseCamera,
        feature_extractor: BaseFeatureExtractor,
        region_detector: Optional[BaseRegionDetector] = None,
        config: Optional[Union[AugmentConfig, Dict]] = None,
    ):
        """
        Initialize an augmentation session.

        Args:
            camera: Frame source
            feature_extractor: Keypoint detector
            region_detector: Detector proposing surface regions
            config: AugmentConfig or configuration dictionary
        """
        if config is None:
            config = AugmentConfig()
        elif isinstance(config, dict):
            config = AugmentConfig.from_dict(config)
        self.config = config

        self.camera = camera
        self.feature_extractor = feature_extractor
        self.region_detector = region_detector
        self.device = torch.device(config.device)

        self.logger = logging.getLogger(self.__class__.__name__)

        self._init_components()

        self._surfaces = SurfaceTable(config.max_surfaces)
        self._cache = FrameCache()
        self._lock = threading.RLock()
        self._capturing = False
        self._augmenting = False
        self.frame_idx = 0

        self.logger.info(
            f"Augmentation session created (max surfaces: {config.max_surfaces}, "
            f"device: {self.device})"
        )

    def _init_components(self):
        config = self.config
        self.matcher = DescriptorMatcher(config.uniqueness_threshold)
        self.correspondence_builder = CorrespondenceBuilder(
            matcher=self.matcher,
            max_correspondences=config.max_correspondences,
            min_correspondences=config.min_correspondences,
            max_difference=config.max_keypoint_difference,
            refresh_on_fallback=config.refresh_on_fallback,
        )
        self.estimator = AffineEstimator(
            min_correspondences=config.min_correspondences,
            max_skew=config.max_skew,
            max_scale_ratio=config.max_scale_ratio,
            inverse_method=config.inverse_method,
        )
        self.model_maintainer = ModelMaintainer(
            matcher=self.matcher,
            max_difference=config.max_keypoint_difference,
            candidate_capacity=config.model_capacity,
        )

    # Session control

    def start_capture(self):
        """Start the camera."""
        with self._lock:
            if self._capturing:
                return
            self.camera.start()
            self._capturing = True
            self.logger.info("Capture started")

    def stop_capture(self):
        """Stop the camera. Surfaces and the last frame are kept."""
        with self._lock:
            if not self._capturing:
                return
            self.camera.stop()
            self._capturing = False
            self.logger.info("Capture stopped")

    def start_augmentation(self):
        """Enable surface tracking in ``update_all``."""
        with self._lock:
            self._augmenting = True
            self.logger.info("Augmentation started")

    def stop_augmentation(self):
        """Disable surface tracking; frames are still acquired."""
        with self._lock:
            self._augmenting = False
            self.logger.info("Augmentation stopped")

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def is_augmenting(self) -> bool:
        return self._augmenting

    def __enter__(self) -> "AugmentationSession":
        self.start_capture()
        self.start_augmentation()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release_all()
        self.stop_augmentation()
        self.stop_capture()

    # Per-frame update

    def update_all(self) -> Dict[int, SurfaceStatus]:
        """
        Acquire a frame and update every surface against it.

        Returns:
            Status of every active surface, keyed by handle

        Raises:
            NotInitializedError: If capture has not been started
            FrameSkippedError: If no frame was acquired; surfaces are untouched
            CameraIOError: If the camera failed
        """
        with self._lock:
            if not self._capturing:
                raise NotInitializedError("Capture has not been started")

            try:
                frame = self.camera.acquire_frame(self.config.frame_timeout)
            except FrameSkippedError as e:
                self.logger.warning(f"Frame skipped: {e}")
                raise

            self.frame_idx += 1
            self._cache.reset(frame, self.frame_idx)

            if self._augmenting and len(self._surfaces) > 0:
                keypoints = self._cache.keypoints(self.feature_extractor)
                for surface in self._surfaces:
                    self._update_surface(surface, keypoints)

            return {surface.handle: surface.status for surface in self._surfaces}

    def _update_surface(self, surface: TrackedSurface, keypoints: List[KeyPoint]):
        correspondences = self.correspondence_builder.build(surface, keypoints)

        try:
            forward, inverse = self.estimator.estimate(
                correspondences.model_points(), correspondences.frame_points()
            )
        except ImplausibleTransformError as e:
            self._mark_lost(surface, TrackingFailure.IMPLAUSIBLE_TRANSFORM, e)
            return
        except InsufficientMatchesError as e:
            self._mark_lost(surface, TrackingFailure.INSUFFICIENT_MATCHES, e)
            return

        surface.set_transform(forward, inverse)
        if surface.status != SurfaceStatus.TRACKING:
            self.logger.info(
                f"Surface {surface.handle} tracking at frame {self.frame_idx}"
            )
        surface.mark_tracked(self.frame_idx)

        self.model_maintainer.update(surface, keypoints)

    def _mark_lost(
        self, surface: TrackedSurface, failure: TrackingFailure, error: Exception
    ):
        if surface.status != SurfaceStatus.LOST:
            self.logger.warning(
                f"Surface {surface.handle} lost at frame {self.frame_idx}: {error}"
            )
        else:
            self.logger.debug(f"Surface {surface.handle} still lost: {error}")
        surface.mark_lost(failure, self.frame_idx)

    # Detector queries

    @property
    def current_frame(self) -> Optional[np.ndarray]:
        return self._cache.frame

    def get_regions(self) -> List[Region]:
        """
        Candidate surface regions of the current frame.

        Raises:
            NotInitializedError: If no frame has been acquired or no region
                detector is configured
        """
        with self._lock:
            self._require_frame()
            if self.region_detector is None:
                raise NotInitializedError("No region detector configured")
            return self._cache.regions(self.region_detector)

    def get_keypoints(self) -> List[KeyPoint]:
        """Keypoints of the current frame."""
        with self._lock:
            self._require_frame()
            return self._cache.keypoints(self.feature_extractor)

    def _require_frame(self):
        if not self._cache.has_frame:
            raise NotInitializedError("No frame has been acquired")

    # Surface lifecycle

    def create_surface(self, region: Region) -> int:
        """
        Start tracking the surface inside a region of the current frame.

        Args:
            region: Region in current-frame coordinates

        Returns:
            Handle of the new surface

        Raises:
            NotInitializedError: If no frame has been acquired
            NoSurfaceCapacityError: If every surface slot is in use
            InsufficientSeedKeypointsError: If the region holds too few keypoints
            AllocationFailureError: If the surface model cannot be allocated
        """
        with self._lock:
            self._require_frame()
            if region.radius <= 0:
                # No keypoint can lie inside an ellipse without extent
                raise InsufficientSeedKeypointsError(0, self.config.min_seed_keypoints)
            handle = self._surfaces.next_free()
            keypoints = self._cache.keypoints(self.feature_extractor)

            try:
                surface = TrackedSurface.seed(
                    handle,
                    region,
                    keypoints,
                    capacity=self.config.model_capacity,
                    descriptor_size=self.config.descriptor_size,
                    device=self.device,
                    inverse_method=self.config.inverse_method,
                )
            except MemoryError as e:
                raise AllocationFailureError(
                    f"Failed to allocate surface model: {e}"
                ) from e

            if len(surface.model) < self.config.min_seed_keypoints:
                raise InsufficientSeedKeypointsError(
                    len(surface.model), self.config.min_seed_keypoints
                )

            self._surfaces.insert(surface)
            self.logger.info(
                f"Created surface {handle} from {region} with "
                f"{len(surface.model)} keypoints"
            )
            return handle

    def release_surface(self, handle: int):
        """
        Stop tracking a surface and free its handle.

        Raises:
            InvalidHandleError: If the handle is not in use
        """
        with self._lock:
            surface = self._surfaces.remove(handle)
            surface.mark_released()
            self.logger.info(f"Released surface {handle}")

    def release_all(self):
        with self._lock:
            for handle in self._surfaces.handles():
                self.release_surface(handle)

    # Surface queries

    def handles(self) -> List[int]:
        with self._lock:
            return self._surfaces.handles()

    def get_surface(self, handle: int) -> TrackedSurface:
        with self._lock:
            return self._surfaces.get(handle)

    def get_status(self, handle: int) -> SurfaceStatus:
        with self._lock:
            return self._surfaces.get(handle).status

    def get_failure(self, handle: int) -> TrackingFailure:
        with self._lock:
            return self._surfaces.get(handle).failure

    def get_transform(self, handle: int) -> torch.Tensor:
        """Forward transform (3x3) mapping model space into the current frame."""
        with self._lock:
            return self._surfaces.get(handle).forward.matrix.clone()

    def get_gl_matrix(self, handle: int) -> List[float]:
        """Forward transform as a column-major 4x4 matrix."""
        with self._lock:
            return self._surfaces.get(handle).forward.as_gl_matrix()

    def transform_point(self, handle: int, x: float, y: float) -> Tuple[float, float]:
        """Map a model-space point into the current frame."""
        with self._lock:
            return self._surfaces.get(handle).transform_point(x, y)

    def untransform_point(
        self, handle: int, x: float, y: float
    ) -> Tuple[float, float]:
        """Map a current-frame point into model space."""
        with self._lock:
            return self._surfaces.get(handle).untransform_point(x, y)
