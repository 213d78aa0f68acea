import bisect
import logging
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple

import torch

from ..feature_extraction.base import KeyPoint
from ..feature_extraction.feature_matcher import DescriptorMatcher

if TYPE_CHECKING:
    from .base import TrackedSurface


class Correspondence:
    """A model keypoint matched to a keypoint of the current frame."""

    def __init__(
        self,
        model_point: Tuple[float, float],
        frame_point: Tuple[float, float],
        distance: float,
        model_index: int,
    ):
        self.model_point = model_point
        self.frame_point = frame_point
        self.distance = distance
        self.model_index = model_index

    def __repr__(self) -> str:
        return (
            f"Correspondence(model={self.model_point}, frame={self.frame_point}, "
            f"distance={self.distance:.4f})"
        )


class CorrespondenceSet:
    """
    Correspondences kept in ascending order of descriptor distance.

    Only distances strictly below ``max_difference`` are accepted. When the
    set is full a new correspondence must beat the current worst one, which
    is then evicted.
    """

    def __init__(self, capacity: int = 256, max_difference: float = 2.0):
        self.capacity = capacity
        self.max_difference = max_difference
        self._distances: List[float] = []
        self._items: List[Correspondence] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Correspondence]:
        return iter(self._items)

    def __getitem__(self, index: int) -> Correspondence:
        return self._items[index]

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self.capacity

    def add(self, correspondence: Correspondence) -> bool:
        """
        Insert a correspondence in distance order.

        Returns:
            True if the correspondence was kept
        """
        distance = correspondence.distance
        if distance >= self.max_difference:
            return False
        if self.is_full and distance >= self._distances[-1]:
            return False

        # Equal distances keep insertion order
        position = bisect.bisect_right(self._distances, distance)
        self._distances.insert(position, distance)
        self._items.insert(position, correspondence)

        if len(self._items) > self.capacity:
            self._distances.pop()
            self._items.pop()
        return True

    def distances(self) -> List[float]:
        return list(self._distances)

    def model_points(self) -> torch.Tensor:
        """Model-space points (N, 2)."""
        if not self._items:
            return torch.zeros((0, 2), dtype=torch.float64)
        return torch.tensor([c.model_point for c in self._items], dtype=torch.float64)

    def frame_points(self) -> torch.Tensor:
        """Frame-space points (N, 2)."""
        if not self._items:
            return torch.zeros((0, 2), dtype=torch.float64)
        return torch.tensor([c.frame_point for c in self._items], dtype=torch.float64)


class CorrespondenceBuilder:
    """
    Finds correspondences between a surface model and a frame.

    Matching first considers only the keypoints that the current inverse
    transform maps inside the surface. If that yields fewer than
    ``min_correspondences`` matches, every keypoint of the frame is tried.
    Every model keypoint uniquely matched in the windowed pass takes the
    descriptor of its frame keypoint, whether or not the distance is below
    the correspondence threshold, so the model follows gradual appearance
    changes.
    """

    def __init__(
        self,
        matcher: Optional[DescriptorMatcher] = None,
        max_correspondences: int = 256,
        min_correspondences: int = 5,
        max_difference: float = 2.0,
        refresh_on_fallback: bool = False,
    ):
        """
        Initialize correspondence builder.

        Args:
            matcher: Descriptor matcher
            max_correspondences: Maximum number of correspondences kept
            min_correspondences: Windowed matches needed to skip the fallback
            max_difference: Largest accepted descriptor distance (exclusive)
            refresh_on_fallback: Also refresh model descriptors on the
                whole-frame pass
        """
        self.matcher = matcher if matcher is not None else DescriptorMatcher()
        self.max_correspondences = max_correspondences
        self.min_correspondences = min_correspondences
        self.max_difference = max_difference
        self.refresh_on_fallback = refresh_on_fallback

        self.logger = logging.getLogger(self.__class__.__name__)

    def build(
        self, surface: "TrackedSurface", keypoints: List[KeyPoint]
    ) -> CorrespondenceSet:
        """
        Build correspondences for one surface.

        Args:
            surface: Tracked surface
            keypoints: Keypoints of the current frame

        Returns:
            CorrespondenceSet
        """
        window = surface.window(keypoints)
        correspondences = self._match(surface, window, refresh=True)

        if len(correspondences) < self.min_correspondences:
            self.logger.debug(
                f"Surface {surface.handle}: {len(correspondences)} windowed "
                f"matches, retrying over {len(keypoints)} frame keypoints"
            )
            correspondences = self._match(
                surface, keypoints, refresh=self.refresh_on_fallback
            )

        self.logger.debug(
            f"Surface {surface.handle}: {len(correspondences)} correspondences"
        )
        return correspondences

    def _match(
        self, surface: "TrackedSurface", keypoints: List[KeyPoint], refresh: bool
    ) -> CorrespondenceSet:
        model = surface.model
        correspondences = CorrespondenceSet(
            self.max_correspondences, self.max_difference
        )

        for kp in keypoints:
            match = self.matcher.match(kp.descriptor, model.active_descriptors)
            if match is None:
                continue

            if match.distance < self.max_difference:
                position = model.position(match.index)
                correspondences.add(
                    Correspondence(
                        model_point=(position[0].item(), position[1].item()),
                        frame_point=kp.pt(),
                        distance=match.distance,
                        model_index=match.index,
                    )
                )
            if refresh:
                model.refresh(match.index, kp.descriptor)

        return correspondences
