"""
Candidate surface regions.

A region is an ellipse summarising a connected blob found by a region
detector. Regions seed tracked surfaces: their extent decides which
keypoints belong to the surface, both at creation and, mapped into model
space, on every later frame.
"""
import logging
import math
from typing import List, Tuple, Union

import cv2
import numpy as np
import torch

from .feature_extraction.base import BaseFeatureExtractor


class Region:
    """Rotated ellipse describing a candidate planar surface."""

    def __init__(self, x: float, y: float, a: float, b: float, angle: float = 0.0):
        """
        Initialize a region.

        Args:
            x: Center X coordinate
            y: Center Y coordinate
            a: Semi-major axis
            b: Semi-minor axis
            angle: Rotation of the ``a`` axis from the +x axis, in radians
        """
        self.x = float(x)
        self.y = float(y)
        self.a = float(a)
        self.b = float(b)
        self.angle = float(angle)

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @property
    def radius(self) -> float:
        """Mean semi-axis, used to normalise model coordinates."""
        return (self.a + self.b) / 2.0

    def contains(self, points: torch.Tensor) -> torch.Tensor:
        """
        Test which points lie strictly inside the ellipse.

        Args:
            points: Points (N, 2)

        Returns:
            Boolean mask (N,)
        """
        if points.shape[0] == 0 or self.a <= 0 or self.b <= 0:
            return torch.zeros(points.shape[0], dtype=torch.bool)

        points = points.to(torch.float64)
        dx = points[:, 0] - self.x
        dy = points[:, 1] - self.y

        # Rotate into the ellipse frame
        cos_angle = math.cos(self.angle)
        sin_angle = math.sin(self.angle)
        rx = cos_angle * dx + sin_angle * dy
        ry = -sin_angle * dx + cos_angle * dy

        return (rx / self.a) ** 2 + (ry / self.b) ** 2 < 1.0

    def contains_point(self, x: float, y: float) -> bool:
        return bool(self.contains(torch.tensor([[x, y]], dtype=torch.float64))[0])

    def to_model(self, points: torch.Tensor) -> torch.Tensor:
        """
        Express frame points in normalised model coordinates.

        Args:
            points: Points (N, 2)

        Returns:
            Points relative to the center, divided by the mean semi-axis
        """
        self._require_radius()
        center = torch.tensor([self.x, self.y], dtype=torch.float64)
        return (points.to(torch.float64) - center) / self.radius

    def normalized(self) -> "Region":
        """The same ellipse in model coordinates."""
        self._require_radius()
        return Region(0.0, 0.0, self.a / self.radius, self.b / self.radius, self.angle)

    def _require_radius(self):
        if self.radius <= 0:
            raise ValueError(f"Degenerate region has no extent: {self}")

    def __repr__(self) -> str:
        return (
            f"Region(x={self.x:.2f}, y={self.y:.2f}, a={self.a:.2f}, "
            f"b={self.b:.2f}, angle={self.angle:.3f})"
        )


def ellipse_from_points(points: np.ndarray) -> Region:
    """
    Summarise a pixel set by its second moments.

    The semi-axes are twice the standard deviations along the principal
    directions.

    Args:
        points: Pixel coordinates (N, 2) as (x, y)

    Returns:
        Region
    """
    points = np.asarray(points, dtype=np.float64)
    mean_x, mean_y = points.mean(axis=0)
    centered = points - np.array([mean_x, mean_y])

    xx = float(np.mean(centered[:, 0] ** 2))
    yy = float(np.mean(centered[:, 1] ** 2))
    xy = float(np.mean(centered[:, 0] * centered[:, 1]))

    root = math.sqrt((xx - yy) ** 2 + 4 * xy * xy)
    major = math.sqrt(max(0.5 * (xx + yy + root), 0.0))
    minor = math.sqrt(max(0.5 * (xx + yy - root), 0.0))
    angle = 0.5 * math.atan2(2 * xy, xx - yy)

    return Region(mean_x, mean_y, 2.0 * major, 2.0 * minor, angle)


class BaseRegionDetector:
    """Base class for region detection."""

    def detect(self, frame: Union[np.ndarray, torch.Tensor]) -> List[Region]:
        """
        Detect candidate surface regions.

        Args:
            frame: Camera frame

        Returns:
            List of Region objects
        """
        raise NotImplementedError("Subclasses must implement detect method")


class MSERRegionDetector(BaseRegionDetector):
    """Maximally stable extremal regions, summarised as ellipses."""

    def __init__(
        self,
        delta: int = 6,
        min_area: float = 0.005,
        max_area: float = 0.4,
        max_variation: float = 0.2,
        min_diversity: float = 0.7,
        max_regions: int = 256,
    ):
        """
        Initialize MSER detector.

        Args:
            delta: Intensity step between compared thresholds
            min_area: Minimum region area as a fraction of the image area
            max_area: Maximum region area as a fraction of the image area
            max_variation: Maximum relative area variation of a stable region
            min_diversity: Minimum diversity between nested regions
            max_regions: Maximum number of regions returned (largest first)
        """
        if not 0.0 <= min_area < max_area <= 1.0:
            raise ValueError(
                f"Expected 0 <= min_area < max_area <= 1, got {min_area}, {max_area}"
            )
        self.delta = delta
        self.min_area = min_area
        self.max_area = max_area
        self.max_variation = max_variation
        self.min_diversity = min_diversity
        self.max_regions = max_regions

        # Reuse the frame conversion of the feature detectors
        self._converter = BaseFeatureExtractor()
        self.logger = logging.getLogger(self.__class__.__name__)

    def detect(self, frame: Union[np.ndarray, torch.Tensor]) -> List[Region]:
        """
        Detect MSER regions.

        Args:
            frame: Camera frame

        Returns:
            List of Region objects
        """
        gray = self._converter._preprocess_image(frame)
        image_area = gray.shape[0] * gray.shape[1]

        mser = cv2.MSER_create(
            int(self.delta),
            max(int(self.min_area * image_area), 1),
            max(int(self.max_area * image_area), 2),
            float(self.max_variation),
            float(self.min_diversity),
        )
        pixel_sets, _ = mser.detectRegions(gray)

        # Largest regions first
        pixel_sets = sorted(pixel_sets, key=len, reverse=True)[: self.max_regions]

        regions = []
        for pixels in pixel_sets:
            if len(pixels) < 3:
                continue
            region = ellipse_from_points(pixels.reshape(-1, 2))
            if region.b > 0:
                regions.append(region)

        self.logger.debug(f"Detected {len(regions)} MSER regions")
        return regions
