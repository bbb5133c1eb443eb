"""Rigid transforms for course layout.

A Pose is a 4x4 homogeneous matrix. Composition with ``*`` applies the
right-hand pose in the local frame of the left-hand one, so
``start * Pose.at(0, 0, -7)`` is "seven units forward of start". The
course runs along the local -Z axis.
"""

import math
from typing import Iterable, Union

import numpy as np


Vector = Union[np.ndarray, Iterable[float]]


def vec3(x: float, y: float, z: float) -> np.ndarray:
    """Build a float vector."""
    return np.array([x, y, z], dtype=float)


class Pose:
    """Position and orientation in world space."""

    __slots__ = ("matrix",)

    def __init__(self, matrix: np.ndarray = None):
        if matrix is None:
            matrix = np.identity(4)
        self.matrix = np.asarray(matrix, dtype=float)

    @classmethod
    def identity(cls) -> "Pose":
        return cls()

    @classmethod
    def at(cls, x: float, y: float, z: float) -> "Pose":
        """Pure translation."""
        m = np.identity(4)
        m[:3, 3] = (x, y, z)
        return cls(m)

    @classmethod
    def angles(cls, rx: float = 0.0, ry: float = 0.0, rz: float = 0.0) -> "Pose":
        """Pure rotation in radians, applied about X, then Y, then Z."""
        cx, sx = math.cos(rx), math.sin(rx)
        cy, sy = math.cos(ry), math.sin(ry)
        cz, sz = math.cos(rz), math.sin(rz)
        rot_x = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
        rot_y = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
        rot_z = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
        m = np.identity(4)
        m[:3, :3] = rot_x @ rot_y @ rot_z
        return cls(m)

    def __mul__(self, other: "Pose") -> "Pose":
        if not isinstance(other, Pose):
            return NotImplemented
        return Pose(self.matrix @ other.matrix)

    def translate(self, x: float, y: float, z: float) -> "Pose":
        """Offset in this pose's local frame."""
        return self * Pose.at(x, y, z)

    def shifted(self, offset: Vector) -> "Pose":
        """Offset in world space, orientation unchanged."""
        m = self.matrix.copy()
        m[:3, 3] += np.asarray(offset, dtype=float)
        return Pose(m)

    @property
    def position(self) -> np.ndarray:
        return self.matrix[:3, 3].copy()

    @property
    def rotation(self) -> np.ndarray:
        return self.matrix[:3, :3].copy()

    @property
    def look_vector(self) -> np.ndarray:
        """Forward direction (local -Z)."""
        return -self.matrix[:3, 2]

    @property
    def right_vector(self) -> np.ndarray:
        return self.matrix[:3, 0].copy()

    @property
    def up_vector(self) -> np.ndarray:
        return self.matrix[:3, 1].copy()

    def rotate_vector(self, local: Vector) -> np.ndarray:
        """Express a local direction in world space."""
        return self.matrix[:3, :3] @ np.asarray(local, dtype=float)

    def lerp(self, other: "Pose", alpha: float) -> "Pose":
        """Interpolate position toward ``other``; keeps this orientation.

        Tweens in this package only ever move between poses that share an
        orientation.
        """
        m = self.matrix.copy()
        m[:3, 3] = self.matrix[:3, 3] + (other.matrix[:3, 3] - self.matrix[:3, 3]) * alpha
        return Pose(m)

    def isclose(self, other: "Pose", atol: float = 1e-6) -> bool:
        return bool(np.allclose(self.matrix, other.matrix, atol=atol))

    def to_list(self) -> list:
        """Position as a plain list, for JSON."""
        return [round(float(v), 3) for v in self.matrix[:3, 3]]

    def __repr__(self) -> str:
        x, y, z = self.matrix[:3, 3]
        return f"Pose({x:.2f}, {y:.2f}, {z:.2f})"
