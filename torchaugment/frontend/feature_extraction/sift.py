import logging
from typing import List, Union

import cv2
import numpy as np
import torch

from .base import DESCRIPTOR_SIZE, BaseFeatureExtractor, KeyPoint

# OpenCV scales SIFT descriptors to a norm of 512 before quantisation
OPENCV_DESCRIPTOR_NORM = 512.0


class SIFTFeatureExtractor(BaseFeatureExtractor):
    """SIFT (Scale-Invariant Feature Transform) feature detector and descriptor.

    Wraps OpenCV's SIFT implementation. Descriptors are rescaled to unit
    norm so that L1 distances between them are comparable with the default
    matching threshold."""

    def __init__(
        self,
        max_features: int = 1024,
        n_octave_layers: int = 3,
        contrast_threshold: float = 0.04,
        edge_threshold: float = 10.0,
        sigma: float = 1.6,
        device: Union[str, torch.device] = "cpu",
    ):
        """
        Initialize SIFT detector.

        Args:
            max_features: Maximum number of features to detect
            n_octave_layers: Number of scales sampled per octave
            contrast_threshold: Threshold for contrast filtering
            edge_threshold: Threshold for edge filtering
            sigma: Base scale for Gaussian blur
            device: Device descriptor tensors are placed on
        """
        super().__init__(max_features)
        self.n_octave_layers = n_octave_layers
        self.contrast_threshold = contrast_threshold
        self.edge_threshold = edge_threshold
        self.sigma = sigma
        self.device = torch.device(device)

        self._sift = cv2.SIFT_create(
            nfeatures=max_features,
            nOctaveLayers=n_octave_layers,
            contrastThreshold=contrast_threshold,
            edgeThreshold=edge_threshold,
            sigma=sigma,
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def detect(self, frame: Union[np.ndarray, torch.Tensor]) -> List[KeyPoint]:
        """
        Extract SIFT keypoints and descriptors from a frame.

        Args:
            frame: Camera frame

        Returns:
            List of KeyPoint objects
        """
        gray = self._preprocess_image(frame)
        cv_keypoints, cv_descriptors = self._sift.detectAndCompute(gray, None)

        if cv_descriptors is None or len(cv_keypoints) == 0:
            self.logger.debug("No SIFT keypoints detected")
            return []

        descriptors = torch.from_numpy(
            np.asarray(cv_descriptors, dtype=np.float32) / OPENCV_DESCRIPTOR_NORM
        ).to(self.device)

        if descriptors.shape[1] != DESCRIPTOR_SIZE:
            raise ValueError(
                f"Expected {DESCRIPTOR_SIZE}-dimensional descriptors, "
                f"got {descriptors.shape[1]}"
            )

        keypoints = []
        for i, kp in enumerate(cv_keypoints):
            keypoints.append(
                KeyPoint(
                    x=kp.pt[0],
                    y=kp.pt[1],
                    descriptor=descriptors[i],
                    size=float(kp.size),
                    angle=float(kp.angle),
                    response=float(kp.response),
                    octave=int(kp.octave),
                )
            )

        # Sort by response and limit to max_features
        keypoints.sort(key=lambda x: x.response, reverse=True)
        if len(keypoints) > self.max_features:
            keypoints = keypoints[: self.max_features]

        return keypoints
