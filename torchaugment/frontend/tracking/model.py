import logging
from typing import TYPE_CHECKING, Iterator, List, NamedTuple, Optional

import torch

from ..feature_extraction.base import DESCRIPTOR_SIZE, KeyPoint, keypoint_descriptors
from ..feature_extraction.feature_matcher import DescriptorMatcher

if TYPE_CHECKING:
    from .base import TrackedSurface


class ModelKeypointSet:
    """
    Fixed-capacity ring buffer of model keypoints.

    Positions are in model space. Once the buffer is full, every insertion
    overwrites the slot under the cursor, so the oldest keypoint is evicted
    first. Descriptors are stored in a single (capacity, D) tensor and the
    first ``count`` rows are the active reference set for matching.
    """

    def __init__(
        self,
        capacity: int = 512,
        descriptor_size: int = DESCRIPTOR_SIZE,
        device: Optional[torch.device] = None,
    ):
        """
        Initialize an empty model.

        Args:
            capacity: Maximum number of keypoints
            descriptor_size: Descriptor length
            device: Device for descriptor storage
        """
        if capacity <= 0:
            raise ValueError(f"Capacity must be positive, got {capacity}")

        self.capacity = capacity
        self.descriptor_size = descriptor_size
        self.device = torch.device(device) if device is not None else torch.device("cpu")

        self.positions = torch.zeros((capacity, 2), dtype=torch.float64)
        self.descriptors = torch.zeros(
            (capacity, descriptor_size), dtype=torch.float32, device=self.device
        )
        self.sizes = torch.zeros(capacity, dtype=torch.float32)
        self.angles = torch.full((capacity,), -1.0, dtype=torch.float32)

        self.count = 0
        self.cursor = 0

    def __len__(self) -> int:
        return self.count

    @property
    def is_full(self) -> bool:
        return self.count == self.capacity

    @property
    def active_descriptors(self) -> torch.Tensor:
        """Descriptors of the occupied slots (count, D)."""
        return self.descriptors[: self.count]

    @property
    def active_positions(self) -> torch.Tensor:
        """Positions of the occupied slots (count, 2)."""
        return self.positions[: self.count]

    def add(
        self,
        x: float,
        y: float,
        descriptor: torch.Tensor,
        size: float = 1.0,
        angle: float = -1.0,
    ) -> int:
        """
        Insert a keypoint at the cursor.

        Args:
            x: Model-space X coordinate
            y: Model-space Y coordinate
            descriptor: Descriptor (D,)
            size: Keypoint size
            angle: Keypoint orientation

        Returns:
            Slot index written
        """
        slot = self.cursor
        self.positions[slot, 0] = x
        self.positions[slot, 1] = y
        self.descriptors[slot] = descriptor.to(self.device, torch.float32)
        self.sizes[slot] = size
        self.angles[slot] = angle

        self.cursor = (self.cursor + 1) % self.capacity
        if self.count < self.capacity:
            self.count += 1
        return slot

    def refresh(self, index: int, descriptor: torch.Tensor):
        """Replace the descriptor of a slot, leaving its position."""
        if not 0 <= index < self.count:
            raise IndexError(f"Model slot {index} out of range (count={self.count})")
        self.descriptors[index] = descriptor.to(self.device, torch.float32)

    def position(self, index: int) -> torch.Tensor:
        return self.positions[index]

    def oldest_first(self) -> List[int]:
        """Occupied slot indices ordered from oldest to newest."""
        if not self.is_full:
            return list(range(self.count))
        return list(range(self.cursor, self.capacity)) + list(range(self.cursor))

    def keypoint(self, index: int) -> KeyPoint:
        return KeyPoint(
            x=self.positions[index, 0].item(),
            y=self.positions[index, 1].item(),
            descriptor=self.descriptors[index].clone(),
            size=self.sizes[index].item(),
            angle=self.angles[index].item(),
        )

    def keypoints(self) -> List[KeyPoint]:
        """Model keypoints in slot order."""
        return [self.keypoint(i) for i in range(self.count)]


class CandidateSet:
    """Unmatched keypoints of the previous frame, awaiting confirmation."""

    def __init__(self, capacity: int = 512, descriptor_size: int = DESCRIPTOR_SIZE):
        self.capacity = capacity
        self.descriptor_size = descriptor_size
        self._keypoints: List[KeyPoint] = []
        self._descriptors: Optional[torch.Tensor] = None

    def __len__(self) -> int:
        return len(self._keypoints)

    def __iter__(self) -> Iterator[KeyPoint]:
        return iter(self._keypoints)

    @property
    def is_full(self) -> bool:
        return len(self._keypoints) >= self.capacity

    def add(self, keypoint: KeyPoint) -> bool:
        """Stage a keypoint. Returns False when the set is full."""
        if self.is_full:
            return False
        self._keypoints.append(keypoint)
        self._descriptors = None
        return True

    @property
    def descriptors(self) -> torch.Tensor:
        if self._descriptors is None:
            self._descriptors = keypoint_descriptors(
                self._keypoints, self.descriptor_size
            )
        return self._descriptors


class MaintenanceResult(NamedTuple):
    promoted: int
    staged: int


class ModelMaintainer:
    """
    Grows the model of a tracked surface from newly observed keypoints.

    After a surface has been tracked in a frame, each keypoint inside the
    surface that is not already explained by the model is compared with the
    candidates staged on the previous frame. A keypoint seen on two
    consecutive frames is promoted into the model at its model-space
    position; the rest become the candidates for the next frame.
    """

    def __init__(
        self,
        matcher: Optional[DescriptorMatcher] = None,
        max_difference: float = 2.0,
        candidate_capacity: int = 512,
    ):
        """
        Initialize model maintainer.

        Args:
            matcher: Descriptor matcher
            max_difference: Distance under which two descriptors are the same
                keypoint
            candidate_capacity: Maximum number of staged candidates
        """
        self.matcher = matcher if matcher is not None else DescriptorMatcher()
        self.max_difference = max_difference
        self.candidate_capacity = candidate_capacity

        self.logger = logging.getLogger(self.__class__.__name__)

    def update(
        self, surface: "TrackedSurface", keypoints: List[KeyPoint]
    ) -> MaintenanceResult:
        """
        Promote confirmed candidates and stage new ones.

        Args:
            surface: Surface tracked in the current frame
            keypoints: Keypoints of the current frame

        Returns:
            MaintenanceResult with the number of promoted and staged keypoints
        """
        model = surface.model
        previous = surface.candidates
        previous_descriptors = previous.descriptors
        staged = CandidateSet(self.candidate_capacity, model.descriptor_size)
        promoted = 0

        for kp in surface.window(keypoints):
            # Already part of the model
            known = self.matcher.best_match(kp.descriptor, model.active_descriptors)
            if known is not None and known.distance <= self.max_difference:
                continue

            match = self.matcher.match(kp.descriptor, previous_descriptors)
            if match is not None and match.distance < self.max_difference:
                mx, my = surface.untransform_point(kp.x, kp.y)
                model.add(mx, my, kp.descriptor, size=kp.size, angle=kp.angle)
                promoted += 1
            else:
                staged.add(kp)

        surface.candidates = staged

        if promoted:
            self.logger.debug(
                f"Surface {surface.handle}: promoted {promoted} keypoints, "
                f"model size {len(model)}"
            )
        return MaintenanceResult(promoted, len(staged))
