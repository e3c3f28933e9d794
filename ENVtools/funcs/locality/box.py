"""
Periodic simulation box.

The box is centred on the origin, so particle coordinates live in
[-L/2, L/2) along each periodic axis. A box with Lz == 0 is two-dimensional:
z is never wrapped and neighbor queries ignore it.
"""

import numpy as np
from .constants import *
from .core_functions import wrap_vectors_np_core


class Box():
    """
    Orthorhombic periodic box.
    """

    def __init__(
        self,
        Lx: float,
        Ly: float = None,
        Lz: float = None) -> None:
        """
        Args:
            Lx: box length along x
            Ly: box length along y (defaults to Lx)
            Lz: box length along z (defaults to Lx, pass 0 for a 2D box)
        """
        if Ly is None:
            Ly = Lx
        if Lz is None:
            Lz = Lx
        if Lx <= 0 or Ly <= 0:
            raise ValueError("Lx and Ly must be positive")
        if Lz < 0:
            raise ValueError("Lz must be non-negative")

        self.L = np.array([Lx, Ly, Lz], dtype=np.float64)
        self.is2D = Lz == 0

    @classmethod
    def cube(cls, L: float) -> "Box":
        return cls(L, L, L)

    @classmethod
    def square(cls, L: float) -> "Box":
        return cls(L, L, 0.0)

    @property
    def num_of_dims(self) -> int:
        return 2 if self.is2D else 3

    @property
    def volume(self) -> float:
        return float(np.prod(self.L[:self.num_of_dims]))

    def wrap(
        self,
        vectors: np.ndarray) -> np.ndarray:
        """
        Apply the minimum image convention to displacement vectors.

        Args:
            vectors: (3,) or (N, 3) displacement vectors

        Returns:
            wrapped vectors with the same shape and dtype
        """
        vectors = np.asarray(vectors)
        if vectors.shape[-1] != 3:
            raise ValueError("vectors must have 3 components")
        if not np.issubdtype(vectors.dtype, np.floating):
            vectors = vectors.astype(np.float64)
        return wrap_vectors_np_core(vectors, self.L.astype(vectors.dtype))

    def shift_to_box(
        self,
        points: np.ndarray) -> np.ndarray:
        """
        Map positions into [0, L) along the periodic axes, as required by
        periodic kd-trees.
        """
        points = np.asarray(points, dtype=np.float64)
        shifted = points.copy()
        for d in range(self.num_of_dims):
            L = self.L[d]
            shifted[:, d] = np.mod(points[:, d] + 0.5 * L, L)
            # np.mod can round up to exactly L for tiny negative inputs
            shifted[shifted[:, d] >= L, d] = 0.0
        return shifted

    def __eq__(self, other) -> bool:
        if not isinstance(other, Box):
            return NotImplemented
        return bool(np.array_equal(self.L, other.L))

    def __repr__(self) -> str:
        return f"Box(Lx={self.L[X]}, Ly={self.L[Y]}, Lz={self.L[Z]})"
