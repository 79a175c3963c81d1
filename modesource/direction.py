"""Helper functions for handling vectors that represent a spatial direction."""
import enum
from typing import List, Optional

import numpy as np

# Relative threshold below which a vector component counts as zero.
AXIS_TOLERANCE = 1e-6


class SourceDirection(enum.Enum):
    """Direction in which a source launches its mode.

    `AUTOMATIC` takes the axis from the source plane and the sign from the
    mode's wavevector. `NO_DIRECTION` is required whenever the wavevector is
    not along a grid axis. `X`, `Y` and `Z` pin the launch axis explicitly.
    """
    AUTOMATIC = "automatic"
    NO_DIRECTION = "no_direction"
    X = "x"
    Y = "y"
    Z = "z"

    @property
    def axis(self) -> Optional[int]:
        """The pinned axis, or `None` if the direction is not explicit."""
        return {
            SourceDirection.X: 0,
            SourceDirection.Y: 1,
            SourceDirection.Z: 2,
        }.get(self)

    @property
    def is_explicit(self) -> bool:
        return self.axis is not None


def _as_array(vector) -> np.ndarray:
    if isinstance(vector, (list, tuple)):
        return np.array(vector, dtype=float)
    return np.asarray(vector)


def is_axis_aligned(vector: np.ndarray) -> bool:
    """Checks whether `vector` lies along exactly one coordinate axis.

    The zero vector is not axis-aligned.
    """
    vec = _as_array(vector)
    norm = np.linalg.norm(vec)
    if norm == 0:
        return False
    return int(np.sum(np.abs(vec) > AXIS_TOLERANCE * norm)) == 1


def axisvec2axis(vector: np.ndarray) -> int:
    """Return the vector's primary coordinate axis.

    Args:
        vector: The direction vector.

    Returns:
        axis: Direction axis.

    Raises:
        ValueError: If the vector is not axis-aligned.
    """
    vec = _as_array(vector)
    if not is_axis_aligned(vec):
        raise ValueError(
            "Vector has no valid primary coordinate axis, got: {}".format(vec))
    return int(np.argmax(np.abs(vec)))


def unit_vector(axis: int) -> np.ndarray:
    vec = np.zeros(3)
    vec[axis] = 1
    return vec


def rotation_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation matrix for a right-handed rotation of `angle` about `axis`.

    Uses Rodrigues' formula.
    """
    axis = _as_array(axis).astype(float)
    axis = axis / np.linalg.norm(axis)
    cross = np.array([[0, -axis[2], axis[1]], [axis[2], 0, -axis[0]],
                      [-axis[1], axis[0], 0]])
    return (np.cos(angle) * np.eye(3) + np.sin(angle) * cross +
            (1 - np.cos(angle)) * np.outer(axis, axis))


def rotate_in_plane(vector: List[float], angle: float) -> np.ndarray:
    """Rotates `vector` counter-clockwise by `angle` (radians) about z."""
    return rotation_matrix(np.array([0, 0, 1]), angle) @ _as_array(vector)
