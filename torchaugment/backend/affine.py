import logging
import math
from typing import List, Sequence, Tuple

import torch

from ..errors import ImplausibleTransformError, InsufficientMatchesError

# Determinant below which the 2x2 linear block is treated as singular
SINGULAR_EPS = 1e-12


class AffineTransform:
    """
    Planar affine transformation in homogeneous form.

    The matrix is

        [[m1, m2, tx],
         [m3, m4, ty],
         [ 0,  0,  1]]

    so that ``u = m1*x + m2*y + tx`` and ``v = m3*x + m4*y + ty``. Matrices
    are kept in float64.
    """

    def __init__(self, matrix: torch.Tensor):
        """
        Initialize affine transformation.

        Args:
            matrix: 3x3 homogeneous matrix
        """
        if matrix.shape != (3, 3):
            raise ValueError(f"Expected 3x3 matrix, got {tuple(matrix.shape)}")
        self.matrix = matrix.to(torch.float64)

    @classmethod
    def from_params(cls, params: Sequence[float]) -> "AffineTransform":
        """
        Create a transform from the parameter vector.

        Args:
            params: [m1, m2, m3, m4, tx, ty]

        Returns:
            AffineTransform object
        """
        params = torch.as_tensor(params, dtype=torch.float64).flatten()
        if params.shape[0] != 6:
            raise ValueError(f"Expected 6 parameters, got {params.shape[0]}")

        m1, m2, m3, m4, tx, ty = params
        matrix = torch.zeros((3, 3), dtype=torch.float64)
        matrix[0, 0], matrix[0, 1], matrix[0, 2] = m1, m2, tx
        matrix[1, 0], matrix[1, 1], matrix[1, 2] = m3, m4, ty
        matrix[2, 2] = 1.0
        return cls(matrix)

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls(torch.eye(3, dtype=torch.float64))

    @classmethod
    def zero(cls) -> "AffineTransform":
        """The all-zero matrix used before a surface is first tracked."""
        return cls(torch.zeros((3, 3), dtype=torch.float64))

    @classmethod
    def from_translation(cls, tx: float, ty: float) -> "AffineTransform":
        return cls.from_params([1.0, 0.0, 0.0, 1.0, tx, ty])

    @property
    def params(self) -> Tuple[float, float, float, float, float, float]:
        """Parameter vector (m1, m2, m3, m4, tx, ty)."""
        m = self.matrix
        return (
            m[0, 0].item(),
            m[0, 1].item(),
            m[1, 0].item(),
            m[1, 1].item(),
            m[0, 2].item(),
            m[1, 2].item(),
        )

    @property
    def skew(self) -> float:
        """
        Shear measure ``|m2 + m3|``.

        A large positive shear on one axis and a large negative shear on the
        other cancel out here.
        """
        return abs(self.matrix[0, 1].item() + self.matrix[1, 0].item())

    @property
    def scale_ratio(self) -> float:
        """Difference between X and Y scaling, ``|m1 - m4|``."""
        return abs(self.matrix[0, 0].item() - self.matrix[1, 1].item())

    def is_zero(self) -> bool:
        return bool(torch.all(self.matrix == 0))

    def apply(self, points: torch.Tensor) -> torch.Tensor:
        """
        Transform points.

        Args:
            points: Points (N, 2)

        Returns:
            Transformed points (N, 2)
        """
        points = points.to(torch.float64)
        return points @ self.matrix[:2, :2].T + self.matrix[:2, 2]

    def transform_point(self, x: float, y: float) -> Tuple[float, float]:
        point = self.apply(torch.tensor([[x, y]], dtype=torch.float64))[0]
        return point[0].item(), point[1].item()

    def compose(self, other: "AffineTransform") -> "AffineTransform":
        """
        Compose with another transformation (self * other).

        Args:
            other: Transform applied first

        Returns:
            Composed transformation
        """
        return AffineTransform(self.matrix @ other.matrix)

    def inverse(self, method: str = "pinv") -> "AffineTransform":
        """
        Inverse transformation.

        Args:
            method: "pinv" for the Moore-Penrose pseudo-inverse of the full
                matrix, "closed_form" for the analytic affine inverse

        Returns:
            Inverse transformation
        """
        if method == "pinv":
            return AffineTransform(pinv_inverse(self.matrix))
        if method == "closed_form":
            return AffineTransform(closed_form_inverse(self.matrix))
        raise ValueError(f"Unknown inverse method: {method}")

    def as_gl_matrix(self) -> List[float]:
        """
        4x4 column-major matrix for graphics APIs.

        The affine map acts on X/Y, Z passes through unchanged.

        Returns:
            16 floats in column-major order
        """
        gl = torch.eye(4, dtype=torch.float64)
        gl[:2, :2] = self.matrix[:2, :2]
        gl[:2, 3] = self.matrix[:2, 2]
        gl[3, :2] = self.matrix[2, :2]
        gl[3, 3] = self.matrix[2, 2]
        return gl.T.flatten().tolist()

    def __repr__(self) -> str:
        m1, m2, m3, m4, tx, ty = self.params
        return (
            f"AffineTransform(m1={m1:.4f}, m2={m2:.4f}, m3={m3:.4f}, "
            f"m4={m4:.4f}, tx={tx:.4f}, ty={ty:.4f})"
        )


def pinv_inverse(matrix: torch.Tensor) -> torch.Tensor:
    """Pseudo-inverse of a 3x3 matrix; the zero matrix maps to zero."""
    return torch.linalg.pinv(matrix.to(torch.float64))


def closed_form_inverse(matrix: torch.Tensor) -> torch.Tensor:
    """
    Analytic inverse of an affine matrix.

    Inverts the 2x2 linear block and maps the translation through it. Falls
    back to the pseudo-inverse when the block is singular.

    Args:
        matrix: 3x3 affine matrix

    Returns:
        3x3 inverse matrix
    """
    matrix = matrix.to(torch.float64)
    a, b = matrix[0, 0], matrix[0, 1]
    c, d = matrix[1, 0], matrix[1, 1]
    det = a * d - b * c

    if abs(det.item()) < SINGULAR_EPS:
        return pinv_inverse(matrix)

    linear_inv = torch.stack([torch.stack([d, -b]), torch.stack([-c, a])]) / det
    inverse = torch.zeros((3, 3), dtype=torch.float64)
    inverse[:2, :2] = linear_inv
    inverse[:2, 2] = -linear_inv @ matrix[:2, 2]
    inverse[2, 2] = 1.0
    return inverse


def solve_affine(
    model_points: torch.Tensor, frame_points: torch.Tensor
) -> torch.Tensor:
    """
    Least-squares affine parameters mapping model points to frame points.

    Each correspondence (x, y) -> (u, v) contributes the rows
    ``[x, y, 0, 0, 1, 0]`` (for u) and ``[0, 0, x, y, 0, 1]`` (for v).

    Args:
        model_points: Model-space points (N, 2)
        frame_points: Frame-space points (N, 2)

    Returns:
        Parameter vector [m1, m2, m3, m4, tx, ty]
    """
    model_points = model_points.to(torch.float64)
    frame_points = frame_points.to(torch.float64)
    n = model_points.shape[0]

    A = torch.zeros((2 * n, 6), dtype=torch.float64)
    A[0::2, 0] = model_points[:, 0]
    A[0::2, 1] = model_points[:, 1]
    A[0::2, 4] = 1.0
    A[1::2, 2] = model_points[:, 0]
    A[1::2, 3] = model_points[:, 1]
    A[1::2, 5] = 1.0

    b = frame_points.reshape(-1)

    return torch.linalg.pinv(A) @ b


class AffineEstimator:
    """Estimates and validates surface transforms from correspondences."""

    def __init__(
        self,
        min_correspondences: int = 5,
        max_skew: float = 1000.0,
        max_scale_ratio: float = 1000.0,
        inverse_method: str = "pinv",
    ):
        """
        Initialize affine estimator.

        Args:
            min_correspondences: Minimum number of correspondences required
            max_skew: Largest accepted ``|m2 + m3|``
            max_scale_ratio: Largest accepted ``|m1 - m4|``
            inverse_method: How the inverse transform is computed
        """
        self.min_correspondences = min_correspondences
        self.max_skew = max_skew
        self.max_scale_ratio = max_scale_ratio
        self.inverse_method = inverse_method

        self.logger = logging.getLogger(self.__class__.__name__)

    def estimate(
        self, model_points: torch.Tensor, frame_points: torch.Tensor
    ) -> Tuple[AffineTransform, AffineTransform]:
        """
        Estimate the forward and inverse transform.

        Args:
            model_points: Model-space points (N, 2)
            frame_points: Frame-space points (N, 2)

        Returns:
            Tuple of (forward, inverse)

        Raises:
            InsufficientMatchesError: Fewer than min_correspondences points
            ImplausibleTransformError: The estimate failed validation
        """
        n = model_points.shape[0]
        if n < self.min_correspondences:
            raise InsufficientMatchesError(
                f"Too few matching keypoints: {n} < {self.min_correspondences}"
            )

        params = solve_affine(model_points, frame_points)
        forward = AffineTransform.from_params(params)
        self.validate(forward)

        inverse = forward.inverse(self.inverse_method)
        return forward, inverse

    def validate(self, transform: AffineTransform):
        """
        Reject transforms outside plausible affine bounds.

        Raises:
            ImplausibleTransformError: If the transform is rejected
        """
        if not all(math.isfinite(p) for p in transform.params):
            raise ImplausibleTransformError("Transform has non-finite parameters")

        if transform.skew > self.max_skew:
            raise ImplausibleTransformError(
                f"Skew {transform.skew:.2f} exceeds maximum {self.max_skew}"
            )

        if transform.scale_ratio > self.max_scale_ratio:
            raise ImplausibleTransformError(
                f"Scale ratio {transform.scale_ratio:.2f} exceeds maximum "
                f"{self.max_scale_ratio}"
            )
