from typing import Dict, List, Optional, Tuple, Union

import cv2
import numpy as np
import torch

# Length of a SIFT descriptor (4x4 spatial bins x 8 orientation bins)
DESCRIPTOR_SIZE = 128


class KeyPoint:
    """Class representing a keypoint together with its descriptor."""

    def __init__(
        self,
        x: float,
        y: float,
        descriptor: Optional[torch.Tensor] = None,
        size: float = 1.0,
        angle: float = -1.0,
        response: float = 0.0,
        octave: int = 0,
    ):
        self.x = float(x)
        self.y = float(y)
        self.size = size  # Diameter of the meaningful keypoint neighborhood
        self.angle = angle  # Orientation in degrees (-1 if not applicable)
        self.response = response  # Strength of the keypoint
        self.octave = (
            octave  # Octave (pyramid layer) from which the keypoint was extracted
        )
        if descriptor is None:
            descriptor = torch.zeros(DESCRIPTOR_SIZE, dtype=torch.float32)
        self.descriptor = descriptor

    def pt(self) -> Tuple[float, float]:
        """Get point coordinates."""
        return (self.x, self.y)

    def moved_to(self, x: float, y: float) -> "KeyPoint":
        """Copy of this keypoint at another position, sharing the descriptor."""
        return KeyPoint(
            x=x,
            y=y,
            descriptor=self.descriptor,
            size=self.size,
            angle=self.angle,
            response=self.response,
            octave=self.octave,
        )

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "x": self.x,
            "y": self.y,
            "descriptor": self.descriptor.tolist(),
            "size": self.size,
            "angle": self.angle,
            "response": self.response,
            "octave": self.octave,
        }

    @staticmethod
    def from_dict(data: Dict) -> "KeyPoint":
        """Create from dictionary."""
        return KeyPoint(
            x=data["x"],
            y=data["y"],
            descriptor=torch.tensor(data["descriptor"], dtype=torch.float32),
            size=data.get("size", 1.0),
            angle=data.get("angle", -1.0),
            response=data.get("response", 0.0),
            octave=data.get("octave", 0),
        )

    def __repr__(self) -> str:
        return f"KeyPoint(x={self.x:.2f}, y={self.y:.2f}, size={self.size:.2f})"


def keypoint_positions(
    keypoints: List[KeyPoint], dtype: torch.dtype = torch.float64
) -> torch.Tensor:
    """
    Stack keypoint positions into a tensor.

    Args:
        keypoints: List of KeyPoint objects

    Returns:
        Tensor of positions (N, 2)
    """
    if not keypoints:
        return torch.zeros((0, 2), dtype=dtype)
    return torch.tensor([kp.pt() for kp in keypoints], dtype=dtype)


def keypoint_descriptors(
    keypoints: List[KeyPoint], descriptor_size: int = DESCRIPTOR_SIZE
) -> torch.Tensor:
    """
    Stack keypoint descriptors into a tensor.

    Args:
        keypoints: List of KeyPoint objects
        descriptor_size: Descriptor length used for the empty case

    Returns:
        Tensor of descriptors (N, D)
    """
    if not keypoints:
        return torch.zeros((0, descriptor_size), dtype=torch.float32)
    return torch.stack([kp.descriptor.float() for kp in keypoints])


class BaseFeatureExtractor:
    """Base class for local feature detection.

    Subclasses turn a camera frame into a list of keypoints, each carrying its
    descriptor. Frames are RGB numpy arrays (H, W, 3), grayscale arrays (H, W)
    or tensors with shape (C, H, W) or (H, W)."""

    def __init__(self, max_features: int = 1000):
        self.max_features = max_features

    def detect(self, frame: Union[np.ndarray, torch.Tensor]) -> List[KeyPoint]:
        """
        Detect keypoints and compute their descriptors.

        Args:
            frame: Camera frame

        Returns:
            List of KeyPoint objects
        """
        raise NotImplementedError("Subclasses must implement detect method")

    def _preprocess_image(
        self, image: Union[np.ndarray, torch.Tensor]
    ) -> np.ndarray:
        """Convert a frame to an 8-bit single channel image."""
        if isinstance(image, torch.Tensor):
            image = image.detach().cpu()
            if image.dim() == 3:
                # (C, H, W) -> (H, W, C)
                image = image.permute(1, 2, 0)
            image = image.numpy()

        if image.ndim == 3 and image.shape[2] == 3:
            gray = cv2.cvtColor(self._to_uint8(image), cv2.COLOR_RGB2GRAY)
        elif image.ndim == 3 and image.shape[2] == 1:
            gray = self._to_uint8(image[:, :, 0])
        elif image.ndim == 2:
            gray = self._to_uint8(image)
        else:
            raise ValueError(f"Unsupported image format with shape {image.shape}")

        return gray

    @staticmethod
    def _to_uint8(image: np.ndarray) -> np.ndarray:
        if image.dtype == np.uint8:
            return image

        image = image.astype(np.float32)
        # Images in [0, 1] are scaled to [0, 255]
        if image.size > 0 and image.max() <= 1.0 + 1e-6:
            image = image * 255.0
        return np.clip(image, 0, 255).astype(np.uint8)
