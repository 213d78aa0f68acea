from enum import Enum
from typing import List, Optional, Tuple

import torch

from ...backend.affine import AffineTransform
from ..feature_extraction.base import DESCRIPTOR_SIZE, KeyPoint, keypoint_positions
from ..regions import Region
from .model import CandidateSet, ModelKeypointSet


class SurfaceStatus(Enum):
    """Status of a tracked surface."""

    CREATED = 0  # Seeded, not yet updated
    TRACKING = 1  # Last update produced a valid transform
    LOST = 2  # Last update failed, previous transform retained
    RELEASED = 3  # Released by the caller


class TrackingFailure(Enum):
    """Why the last update of a surface failed."""

    NONE = 0
    INSUFFICIENT_MATCHES = 1  # Too few correspondences
    IMPLAUSIBLE_TRANSFORM = 2  # Transform rejected by the skew/scale check


class TrackedSurface:
    """A planar surface tracked across frames (an "augmentation").

    Keypoints are stored in model space: at creation they are expressed
    relative to the seed region's center and divided by its mean semi-axis.
    The forward transform maps model space into the current frame, the
    inverse maps the current frame back into model space."""

    def __init__(
        self,
        handle: int,
        region: Region,
        model: ModelKeypointSet,
        inverse_method: str = "pinv",
    ):
        """
        Initialize a tracked surface.

        Args:
            handle: Identifier of the surface
            region: Seed region in frame coordinates
            model: Model keypoint set
            inverse_method: How the initial inverse transform is computed
        """
        self.handle = handle
        self.region = region
        self.model_region = region.normalized()
        self.model = model
        self.candidates = CandidateSet(model.capacity, model.descriptor_size)

        # Zero until the first successful update
        self.forward = AffineTransform.zero()
        self.inverse = self.forward.inverse(inverse_method)

        self.status = SurfaceStatus.CREATED
        self.failure = TrackingFailure.NONE
        self.frames_tracked = 0
        self.frames_lost = 0
        self.last_update_frame = -1

    @classmethod
    def seed(
        cls,
        handle: int,
        region: Region,
        keypoints: List[KeyPoint],
        capacity: int = 512,
        descriptor_size: int = DESCRIPTOR_SIZE,
        device: Optional[torch.device] = None,
        inverse_method: str = "pinv",
    ) -> "TrackedSurface":
        """
        Create a surface from the keypoints inside a region.

        Args:
            handle: Identifier of the surface
            region: Seed region in frame coordinates
            keypoints: Keypoints of the current frame
            capacity: Model keypoint capacity
            descriptor_size: Descriptor length
            device: Device for descriptor storage
            inverse_method: How inverse transforms are computed

        Returns:
            New TrackedSurface; its model may be empty
        """
        model = ModelKeypointSet(capacity, descriptor_size, device)

        positions = keypoint_positions(keypoints)
        inside = region.contains(positions)
        model_positions = region.to_model(positions)

        for i in torch.nonzero(inside).flatten().tolist():
            kp = keypoints[i]
            model.add(
                model_positions[i, 0].item(),
                model_positions[i, 1].item(),
                kp.descriptor,
                size=kp.size,
                angle=kp.angle,
            )

        return cls(handle, region, model, inverse_method)

    def window(
        self, keypoints: List[KeyPoint], positions: Optional[torch.Tensor] = None
    ) -> List[KeyPoint]:
        """
        Keypoints whose position, mapped into model space by the current
        inverse transform, falls inside the surface region.

        Args:
            keypoints: Frame keypoints
            positions: Precomputed keypoint positions (N, 2)

        Returns:
            Keypoints inside the surface
        """
        if not keypoints:
            return []
        if positions is None:
            positions = keypoint_positions(keypoints)

        inside = self.model_region.contains(self.inverse.apply(positions))
        return [keypoints[i] for i in torch.nonzero(inside).flatten().tolist()]

    def set_transform(self, forward: AffineTransform, inverse: AffineTransform):
        """Replace the forward and inverse transform together."""
        self.forward = forward
        self.inverse = inverse

    def mark_tracked(self, frame_idx: int):
        self.status = SurfaceStatus.TRACKING
        self.failure = TrackingFailure.NONE
        self.frames_tracked += 1
        self.last_update_frame = frame_idx

    def mark_lost(self, failure: TrackingFailure, frame_idx: int):
        """Mark surface as lost; the previous transform is kept."""
        self.status = SurfaceStatus.LOST
        self.failure = failure
        self.frames_lost += 1
        self.last_update_frame = frame_idx

    def mark_released(self):
        self.status = SurfaceStatus.RELEASED

    def transform_point(self, x: float, y: float) -> Tuple[float, float]:
        """Map a model-space point into the current frame."""
        return self.forward.transform_point(x, y)

    def untransform_point(self, x: float, y: float) -> Tuple[float, float]:
        """Map a current-frame point back into model space."""
        return self.inverse.transform_point(x, y)

    def __repr__(self) -> str:
        return (
            f"TrackedSurface(handle={self.handle}, status={self.status.name}, "
            f"model_keypoints={len(self.model)})"
        )
