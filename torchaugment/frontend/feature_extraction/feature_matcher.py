from typing import List, Optional

import torch


class Match:
    """Best match of a query descriptor within a reference set."""

    def __init__(
        self, index: int, distance: float, second_distance: float, unique: bool
    ):
        """
        Initialize a match.

        Args:
            index: Index of the best reference descriptor
            distance: Distance to the best reference descriptor
            second_distance: Distance to the second best reference descriptor
            unique: Whether the match passed the uniqueness test
        """
        self.index = index
        self.distance = distance
        self.second_distance = second_distance
        self.unique = unique

    def __repr__(self) -> str:
        return (
            f"Match(index={self.index}, distance={self.distance:.4f}, "
            f"second_distance={self.second_distance:.4f}, unique={self.unique})"
        )


def descriptor_distance(d1: torch.Tensor, d2: torch.Tensor) -> float:
    """
    Sum of absolute differences between two descriptors.

    Args:
        d1: First descriptor (D,)
        d2: Second descriptor (D,)

    Returns:
        L1 distance
    """
    return torch.sum(torch.abs(d1.float() - d2.float())).item()


def descriptor_distances(query: torch.Tensor, reference: torch.Tensor) -> torch.Tensor:
    """
    L1 distances from one descriptor to every reference descriptor.

    Args:
        query: Query descriptor (D,)
        reference: Reference descriptors (M, D)

    Returns:
        Distances (M,)
    """
    return torch.sum(torch.abs(reference.float() - query.float().unsqueeze(0)), dim=1)


class DescriptorMatcher:
    """Nearest neighbour descriptor matching with an ambiguity test.

    A match is unique when ``best * uniqueness_threshold <= second_best``,
    i.e. the query resembles exactly one reference descriptor strongly."""

    def __init__(self, uniqueness_threshold: float = 3.5):
        """
        Initialize descriptor matcher.

        Args:
            uniqueness_threshold: Multiplier applied to the best distance in
                the uniqueness test
        """
        self.uniqueness_threshold = uniqueness_threshold

    def best_match(
        self, query: torch.Tensor, reference: torch.Tensor
    ) -> Optional[Match]:
        """
        Find the best and second best reference descriptors.

        Args:
            query: Query descriptor (D,)
            reference: Reference descriptors (M, D)

        Returns:
            Match (unique or not), or None if the reference set is empty
        """
        if reference.shape[0] == 0:
            return None

        distances = descriptor_distances(query.to(reference.device), reference)
        # Stable sort so that ties resolve to the lowest index
        top_distances, top_indices = torch.sort(distances, stable=True)

        best = top_distances[0].item()
        second = top_distances[1].item() if distances.shape[0] > 1 else float("inf")

        return Match(
            index=top_indices[0].item(),
            distance=best,
            second_distance=second,
            unique=best * self.uniqueness_threshold <= second,
        )

    def match(self, query: torch.Tensor, reference: torch.Tensor) -> Optional[Match]:
        """
        Match a descriptor against a reference set.

        Args:
            query: Query descriptor (D,)
            reference: Reference descriptors (M, D)

        Returns:
            The best Match if it is unique, otherwise None
        """
        match = self.best_match(query, reference)
        if match is None or not match.unique:
            return None
        return match

    def match_all(
        self, queries: torch.Tensor, reference: torch.Tensor
    ) -> List[Optional[Match]]:
        """
        Match several descriptors against the same reference set.

        Args:
            queries: Query descriptors (N, D)
            reference: Reference descriptors (M, D)

        Returns:
            List with a unique Match or None for each query
        """
        return [self.match(q, reference) for q in queries]
