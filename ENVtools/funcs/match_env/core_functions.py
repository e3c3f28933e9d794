"""
Core Numba JIT compiled functions for local-environment matching.
These are the performance-critical kernels: environment construction,
vector-set cost matrices and the assignment between two vector sets.
NumPy/SciPy counterparts (the *_np_core functions) are used when Numba is
switched off and for the exact assignment policy.
"""
import numpy as np
from numba import njit, prange
from scipy.optimize import linear_sum_assignment
from .constants import *
from ..locality.core_functions import wrap_component_nb_core, wrap_vectors_np_core

##########################################################################################
# Environment construction
##########################################################################################

@njit(parallel=True, cache=True)
def build_env_vectors_nb_core(points, neighbors, box_size, rmax_sq, hard_r):
    """
    Build the environment vectors of every point from its neighbor list.

    Args:
        points: (N, 3) particle positions
        neighbors: (N, k) neighbor indices, nearest first, -1 padded
        box_size: (3,) box lengths (0 for a non-periodic axis)
        rmax_sq: squared cutoff used when hard_r is set
        hard_r: only keep neighbors with |d|^2 < rmax_sq

    Returns:
        vectors: (N, k, 3) wrapped displacements, filled slots first
        num_vecs: (N,) number of filled slots per point
    """
    n = neighbors.shape[0]
    k = neighbors.shape[1]
    vectors = np.zeros((n, k, 3), dtype=points.dtype)
    num_vecs = np.zeros(n, dtype=np.int64)

    for i in prange(n):
        count = 0
        for s in range(k):
            j = neighbors[i, s]
            if j < 0:
                continue
            dx = wrap_component_nb_core(points[j, X] - points[i, X], box_size[X])
            dy = wrap_component_nb_core(points[j, Y] - points[i, Y], box_size[Y])
            dz = wrap_component_nb_core(points[j, Z] - points[i, Z], box_size[Z])
            if hard_r and dx * dx + dy * dy + dz * dz >= rmax_sq:
                continue
            vectors[i, count, X] = dx
            vectors[i, count, Y] = dy
            vectors[i, count, Z] = dz
            count += 1
        num_vecs[i] = count

    return vectors, num_vecs


def build_env_vectors_np_core(points, neighbors, box_size, rmax_sq, hard_r):
    """
    NumPy version of build_env_vectors_nb_core.
    """
    n, k = neighbors.shape
    vectors = np.zeros((n, k, 3), dtype=points.dtype)
    num_vecs = np.zeros(n, dtype=np.int64)

    for i in range(n):
        nbrs = neighbors[i][neighbors[i] >= 0]
        delta = wrap_vectors_np_core(points[nbrs] - points[i], box_size)
        if hard_r:
            delta = delta[np.sum(delta * delta, axis=1) < rmax_sq]
        vectors[i, :delta.shape[0]] = delta
        num_vecs[i] = delta.shape[0]

    return vectors, num_vecs

##########################################################################################
# Cost matrices
##########################################################################################

@njit([sig_sq_dist_matrix_32, sig_sq_dist_matrix_64], cache=True, nogil=True)
def squared_distance_matrix_nb_core(vecs1, vecs2):
    """
    Squared distances |v1 - v2|^2 between every pair of vectors.
    """
    n1 = vecs1.shape[0]
    n2 = vecs2.shape[0]
    cost = np.empty((n1, n2), dtype=vecs1.dtype)
    for a in range(n1):
        for b in range(n2):
            dx = vecs1[a, X] - vecs2[b, X]
            dy = vecs1[a, Y] - vecs2[b, Y]
            dz = vecs1[a, Z] - vecs2[b, Z]
            cost[a, b] = dx * dx + dy * dy + dz * dz
    return cost


def squared_distance_matrix_np_core(vecs1, vecs2):
    """
    NumPy version of squared_distance_matrix_nb_core.
    """
    diff = vecs1[:, np.newaxis, :] - vecs2[np.newaxis, :, :]
    return np.sum(diff * diff, axis=-1)

##########################################################################################
# Assignment between two vector sets
##########################################################################################

@njit([sig_greedy_32, sig_greedy_64], cache=True, nogil=True)
def greedy_assignment_nb_core(vecs1, n1, vecs2, n2, threshold_sq, forward):
    """
    Greedy shortest-pair-first assignment under a squared distance threshold.

    All vector pairs strictly closer than threshold_sq are visited in order of
    increasing squared distance, and a pair is accepted when neither of its
    vectors is paired yet. The visiting order does not depend on which
    environment comes first, so swapping the arguments gives the same outcome.
    Pairs at exactly equal distance are visited in slot order of vecs1.

    Args:
        vecs1, vecs2: vector buffers of the two environments
        n1, n2: number of filled vectors in each buffer
        threshold_sq: squared distance threshold
        forward: (>= n1,) output map from slots of 1 to slots of 2, -1 if unmapped

    Returns:
        True when every vector of the smaller environment was paired
    """
    for a in range(forward.shape[0]):
        forward[a] = UNMATCHED
    if n1 == 0 or n2 == 0:
        return False

    cost = squared_distance_matrix_nb_core(vecs1[:n1], vecs2[:n2])
    n_needed = min(n1, n2)

    n_feasible = 0
    for r in range(n1):
        for c in range(n2):
            if cost[r, c] < threshold_sq:
                n_feasible += 1
    if n_feasible < n_needed:
        return False

    rows = np.empty(n_feasible, dtype=np.int64)
    cols = np.empty(n_feasible, dtype=np.int64)
    dists = np.empty(n_feasible, dtype=np.float64)
    s = 0
    for r in range(n1):
        for c in range(n2):
            if cost[r, c] < threshold_sq:
                rows[s] = r
                cols[s] = c
                dists[s] = cost[r, c]
                s += 1

    order = np.argsort(dists, kind='mergesort')
    row_taken = np.zeros(n1, dtype=np.bool_)
    col_taken = np.zeros(n2, dtype=np.bool_)
    n_paired = 0
    for o in order:
        r = rows[o]
        c = cols[o]
        if row_taken[r] or col_taken[c]:
            continue
        row_taken[r] = True
        col_taken[c] = True
        forward[r] = c
        n_paired += 1
        if n_paired == n_needed:
            return True

    for a in range(forward.shape[0]):
        forward[a] = UNMATCHED
    return False


def greedy_assignment_np_core(vecs1, vecs2, threshold_sq):
    """
    NumPy version of greedy_assignment_nb_core.

    Returns:
        forward: (n1,) map from slots of 1 to slots of 2, -1 if unmapped
        matched: True when every vector of the smaller environment was paired
    """
    n1, n2 = vecs1.shape[0], vecs2.shape[0]
    forward = np.full(n1, UNMATCHED, dtype=np.int64)
    if n1 == 0 or n2 == 0:
        return forward, False

    cost = squared_distance_matrix_np_core(vecs1, vecs2)
    n_needed = min(n1, n2)
    rows, cols = np.nonzero(cost < threshold_sq)
    if rows.size < n_needed:
        return forward, False

    order = np.argsort(cost[rows, cols].astype(np.float64), kind='stable')
    row_taken = np.zeros(n1, dtype=bool)
    col_taken = np.zeros(n2, dtype=bool)
    n_paired = 0
    for r, c in zip(rows[order], cols[order]):
        if row_taken[r] or col_taken[c]:
            continue
        row_taken[r] = True
        col_taken[c] = True
        forward[r] = c
        n_paired += 1
        if n_paired == n_needed:
            return forward, True

    forward[:] = UNMATCHED
    return forward, False


def optimal_assignment_np_core(vecs1, vecs2, threshold_sq, cost=None):
    """
    Exact assignment under a squared distance threshold.

    Pairs over the threshold are given a penalty larger than any complete
    set of allowed pairs can cost, so the minimum-cost assignment uses an
    over-threshold pair only when no complete assignment within threshold
    exists. Among valid assignments the total squared distance is minimal.

    Returns:
        forward: (n1,) map from slots of 1 to slots of 2, -1 if unmapped
        matched: True when every vector of the smaller environment was paired
    """
    n1, n2 = vecs1.shape[0], vecs2.shape[0]
    forward = np.full(n1, UNMATCHED, dtype=np.int64)
    if n1 == 0 or n2 == 0:
        return forward, False

    if cost is None:
        cost = squared_distance_matrix_np_core(vecs1, vecs2)
    cost = np.asarray(cost, dtype=np.float64)
    feasible = cost < threshold_sq

    # every vector of the smaller side needs at least one candidate
    smaller_axis = 1 if n1 <= n2 else 0
    if not np.all(np.any(feasible, axis=smaller_axis)):
        return forward, False

    n_pairs = min(n1, n2)
    penalty = float(threshold_sq) * (n_pairs + 1) + 1.0
    rows, cols = linear_sum_assignment(np.where(feasible, cost, penalty))
    if not np.all(feasible[rows, cols]):
        return forward, False

    forward[rows] = cols
    return forward, True

##########################################################################################
# Candidate pair evaluation
##########################################################################################

@njit(parallel=True, cache=True)
def match_pairs_greedy_nb_core(vectors, num_vecs, pairs, threshold_sq):
    """
    Greedy assignment for every candidate pair, in parallel over pairs.

    Args:
        vectors: (N, k, 3) environment vectors
        num_vecs: (N,) filled slots per environment
        pairs: (P, 2) element ids (i, j) to compare
        threshold_sq: squared distance threshold

    Returns:
        forward: (P, k) maps from slots of i to slots of j
        matched: (P,) whether each pair is similar
    """
    n_pairs = pairs.shape[0]
    k = vectors.shape[1]
    forward = np.empty((n_pairs, k), dtype=np.int64)
    matched = np.zeros(n_pairs, dtype=np.bool_)

    for p in prange(n_pairs):
        i = pairs[p, 0]
        j = pairs[p, 1]
        matched[p] = greedy_assignment_nb_core(
            vectors[i], num_vecs[i], vectors[j], num_vecs[j], threshold_sq, forward[p])

    return forward, matched


def match_pairs_np_core(vectors, num_vecs, pairs, threshold_sq, method=DEFAULT_MATCHING):
    """
    Assignment for a chunk of candidate pairs with the chosen policy.
    Same outputs as match_pairs_greedy_nb_core; this is the unit of work
    handed to joblib workers.
    """
    n_pairs = pairs.shape[0]
    k = vectors.shape[1]
    forward = np.full((n_pairs, k), UNMATCHED, dtype=np.int64)
    matched = np.zeros(n_pairs, dtype=bool)

    if method == MATCHING_GREEDY:
        assign = greedy_assignment_np_core
    else:
        assign = optimal_assignment_np_core

    for p in range(n_pairs):
        i, j = pairs[p]
        n1 = num_vecs[i]
        fwd, ok = assign(vectors[i, :n1], vectors[j, :num_vecs[j]], threshold_sq)
        forward[p, :n1] = fwd
        matched[p] = ok

    return forward, matched
