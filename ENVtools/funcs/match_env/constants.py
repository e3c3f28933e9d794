"""
Constants and type signatures for local-environment matching.
Centralizes the Numba type definitions used by the matching kernels.
"""
from numba import types

##############################################################################
# Global constants
##############################################################################

# Coordinate indices
X, Y, Z = 0, 1, 2

# Default parameters
DEFAULT_NUM_NEIGHBORS = 12
UNMATCHED = -1          # slot without a partner in a correspondence
MOTIF_CLUSTER = 0       # label of the motif class after match_motif

# Similarity thresholds are in units of rmax^2; only (0, 2) is meaningful
THRESHOLD_MIN = 0.0
THRESHOLD_MAX = 2.0

# Vector assignment policies
MATCHING_OPTIMAL = 'optimal'  # exact minimum-cost assignment (scipy)
MATCHING_GREEDY = 'greedy'    # shortest free pair first
MATCHING_METHODS = (MATCHING_OPTIMAL, MATCHING_GREEDY)
DEFAULT_MATCHING = MATCHING_OPTIMAL

# Candidate pairs per worker chunk handed to joblib
CHUNKS_PER_WORKER = 4

##############################################################################
# Type signatures for Numba functions
##############################################################################

# Pairwise squared distances between two vector sets
sig_sq_dist_matrix_32 = types.float32[:, :](
    types.float32[:, :],  # vectors of environment 1 (n1, 3)
    types.float32[:, :]   # vectors of environment 2 (n2, 3)
)

sig_sq_dist_matrix_64 = types.float64[:, :](
    types.float64[:, :],  # vectors of environment 1 (n1, 3)
    types.float64[:, :]   # vectors of environment 2 (n2, 3)
)

# Greedy assignment between two environments, writes the forward map in place
sig_greedy_32 = types.boolean(
    types.float32[:, :],  # vectors of environment 1
    types.int64,          # number of filled vectors in environment 1
    types.float32[:, :],  # vectors of environment 2
    types.int64,          # number of filled vectors in environment 2
    types.float64,        # squared distance threshold
    types.int64[:]        # forward map (out)
)

sig_greedy_64 = types.boolean(
    types.float64[:, :],
    types.int64,
    types.float64[:, :],
    types.int64,
    types.float64,
    types.int64[:]
)
