"""
Numba kernels (and NumPy fallbacks) for periodic wrapping and neighbor lists.
"""
import numpy as np
from numba import njit
from .constants import *

##########################################################################################
# Periodic wrapping
##########################################################################################

@njit(inline='always')
def wrap_component_nb_core(d, box_length):
    """
    Wrap a single displacement component into [-L/2, L/2).
    A non-positive box length marks a non-periodic (2D) axis and is left alone.
    """
    if box_length <= 0.0:
        return d
    return d - box_length * np.floor(d / box_length + 0.5)


def wrap_vectors_np_core(vectors, box_size):
    """
    Wrap displacement vectors (..., 3) into the minimum image of the box.
    """
    box_size = np.asarray(box_size)
    periodic = box_size > 0
    safe_size = np.where(periodic, box_size, 1.0)
    wrapped = vectors - safe_size * np.floor(vectors / safe_size + 0.5)
    return np.where(periodic, wrapped, vectors).astype(vectors.dtype, copy=False)

##########################################################################################
# Neighbor list clean-up
##########################################################################################

@njit(cache=True)
def strip_self_nb_core(idx, num_neighbors):
    """
    Remove each query point from its own k+1 nearest-neighbor row.

    Args:
        idx: (N, M) neighbor indices from a self-query, nearest first
        num_neighbors: number of neighbors kept per row

    Returns:
        (N, num_neighbors) neighbor indices, padded with NO_NEIGHBOR
    """
    n, m = idx.shape
    out = -np.ones((n, num_neighbors), dtype=np.int64)
    for i in range(n):
        count = 0
        skipped = False
        for s in range(m):
            j = idx[i, s]
            if j == i and not skipped:
                skipped = True
                continue
            if count < num_neighbors:
                out[i, count] = j
                count += 1
    return out


def strip_self_np_core(idx, num_neighbors, query_indices=None):
    """
    NumPy version of strip_self_nb_core. Row r is taken to be the query of
    point query_indices[r] (point r when query_indices is None).
    """
    n = idx.shape[0]
    if query_indices is None:
        query_indices = np.arange(n)
    out = np.full((n, num_neighbors), NO_NEIGHBOR, dtype=np.int64)
    for r in range(n):
        row = idx[r]
        self_pos = np.flatnonzero(row == query_indices[r])
        if self_pos.size > 0:
            row = np.delete(row, self_pos[0])
        row = row[:num_neighbors]
        out[r, :row.size] = row
    return out
