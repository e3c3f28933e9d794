"""
Nearest-neighbor queries under periodic boundary conditions.

Neighbors are found with a periodic scipy cKDTree. Each point always gets its
k nearest neighbors (fewer only when the point set has fewer than k + 1
points); rmax is kept as the analysis length scale and is not used to cut the
query.
"""

import numpy as np
from scipy.spatial import cKDTree
from .box import Box
from .constants import *
from .core_functions import strip_self_nb_core, strip_self_np_core


class NearestNeighbors():
    """
    k-nearest-neighbor source for particle snapshots in a periodic box.
    """

    def __init__(
        self,
        box: Box,
        rmax: float,
        num_neighbors: int = DEFAULT_NUM_NEIGHBORS,
        use_numba: bool = True) -> None:
        """
        Args:
            box: periodic simulation box
            rmax: cutoff length scale of the analysis
            num_neighbors: number of nearest neighbors k returned per point
            use_numba: strip self-matches with the Numba kernel
        """
        self.use_numba = use_numba
        self.neighbor_list = None
        self.configure(box, rmax, num_neighbors)

    def configure(
        self,
        box: Box,
        rmax: float,
        num_neighbors: int) -> None:
        """
        Bind the query to a box, cutoff and neighbor count. Drops any
        previously computed neighbor list.
        """
        if rmax <= 0:
            raise ValueError("rmax must be positive")
        if int(num_neighbors) < 1:
            raise ValueError("num_neighbors must be at least 1")
        self.box = box
        self.rmax = float(rmax)
        self.num_neighbors = int(num_neighbors)
        self.neighbor_list = None

    def _query(
        self,
        points: np.ndarray,
        query_indices: np.ndarray) -> np.ndarray:
        """
        Raw k+1 nearest neighbor indices (including the query point itself).
        """
        dims = self.box.num_of_dims
        positions = self.box.shift_to_box(points)[:, :dims]
        tree = cKDTree(positions, boxsize=self.box.L[:dims])
        n_query = min(self.num_neighbors + 1, points.shape[0])
        _, idx = tree.query(positions[query_indices], k=list(range(1, n_query + 1)))
        return np.asarray(idx, dtype=np.int64).reshape(len(query_indices), n_query)

    def compute(
        self,
        points: np.ndarray) -> np.ndarray:
        """
        Compute the neighbor list of every point.

        Args:
            points: (N, 3) particle positions

        Returns:
            neighbor_list: (N, k) indices of each point's neighbors, nearest
                           first, padded with NO_NEIGHBOR
        """
        points = np.asarray(points)
        n_points = points.shape[0]
        if n_points < 2:
            self.neighbor_list = np.full((n_points, self.num_neighbors), NO_NEIGHBOR, dtype=np.int64)
            return self.neighbor_list

        query_indices = np.arange(n_points)
        idx = self._query(points, query_indices)
        if self.use_numba:
            self.neighbor_list = strip_self_nb_core(idx, self.num_neighbors)
        else:
            self.neighbor_list = strip_self_np_core(idx, self.num_neighbors)
        return self.neighbor_list

    def get_neighbor_list(self) -> np.ndarray:
        if self.neighbor_list is None:
            raise RuntimeError("compute must be called before get_neighbor_list")
        return self.neighbor_list

    def neighbors_of(
        self,
        points: np.ndarray,
        i: int) -> np.ndarray:
        """
        Displacement vectors from point i to its k nearest neighbors.

        Args:
            points: (N, 3) particle positions
            i: index of the reference point

        Returns:
            (n, 3) wrapped displacement vectors, nearest first, n <= k
        """
        points = np.asarray(points)
        n_points = points.shape[0]
        if not 0 <= i < n_points:
            raise IndexError(f"point index {i} out of range for {n_points} points")
        if n_points < 2:
            return np.zeros((0, 3), dtype=points.dtype)

        query_indices = np.array([i], dtype=np.int64)
        idx = self._query(points, query_indices)
        row = strip_self_np_core(idx, self.num_neighbors, query_indices)[0]
        row = row[row != NO_NEIGHBOR]
        return self.box.wrap(points[row] - points[i])
