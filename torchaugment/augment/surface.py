from typing import Iterator, List, Optional

from ..errors import InvalidHandleError, NoSurfaceCapacityError
from ..frontend.tracking.base import TrackedSurface


class SurfaceTable:
    """
    Fixed number of surface slots addressed by integer handles.

    A new surface takes the lowest free slot, so handles of released surfaces
    are reused.
    """

    def __init__(self, capacity: int = 32):
        self.capacity = capacity
        self._slots: List[Optional[TrackedSurface]] = [None] * capacity

    def __len__(self) -> int:
        return sum(1 for surface in self._slots if surface is not None)

    def __contains__(self, handle: int) -> bool:
        return 0 <= handle < self.capacity and self._slots[handle] is not None

    def __iter__(self) -> Iterator[TrackedSurface]:
        return (surface for surface in self._slots if surface is not None)

    def next_free(self) -> int:
        """
        Lowest unused handle.

        Raises:
            NoSurfaceCapacityError: If every slot is in use
        """
        for handle, surface in enumerate(self._slots):
            if surface is None:
                return handle
        raise NoSurfaceCapacityError(
            f"All {self.capacity} surface slots are in use"
        )

    def insert(self, surface: TrackedSurface):
        if surface.handle in self:
            raise ValueError(f"Surface slot {surface.handle} is occupied")
        self._slots[surface.handle] = surface

    def get(self, handle: int) -> TrackedSurface:
        """
        Surface stored under a handle.

        Raises:
            InvalidHandleError: If no surface is stored under the handle
        """
        if handle not in self:
            raise InvalidHandleError(handle)
        return self._slots[handle]

    def remove(self, handle: int) -> TrackedSurface:
        surface = self.get(handle)
        self._slots[handle] = None
        return surface

    def handles(self) -> List[int]:
        return [surface.handle for surface in self]
