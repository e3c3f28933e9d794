"""
ENVtools Match Environment

Clustering of particles by the similarity of their local neighbor geometry,
and matching of particle neighborhoods against a reference motif, with
Numba-optimized kernels for environment construction and vector assignment.
"""

# Import main classes
from .operations import MatchEnv
from .environment import Environment, Correspondence, EnvDisjointSet
from .exceptions import (
    MatchEnvError,
    InvalidArgumentError,
    OutOfCapacityError,
    EmptyResultError,
)
from .constants import (
    DEFAULT_NUM_NEIGHBORS,
    UNMATCHED,
    MOTIF_CLUSTER,
    MATCHING_OPTIMAL,
    MATCHING_GREEDY,
)

# Import core functions for advanced users
from .core_functions import (
    build_env_vectors_nb_core,
    build_env_vectors_np_core,
    squared_distance_matrix_nb_core,
    squared_distance_matrix_np_core,
    greedy_assignment_nb_core,
    greedy_assignment_np_core,
    optimal_assignment_np_core,
    match_pairs_greedy_nb_core,
    match_pairs_np_core,
)

__version__ = "0.1.0"

# Define public API
__all__ = [
    'MatchEnv',
    'Environment',
    'Correspondence',
    'EnvDisjointSet',
    'MatchEnvError',
    'InvalidArgumentError',
    'OutOfCapacityError',
    'EmptyResultError',
    'DEFAULT_NUM_NEIGHBORS',
    'UNMATCHED',
    'MOTIF_CLUSTER',
    'MATCHING_OPTIMAL',
    'MATCHING_GREEDY',
    # Core functions for advanced use
    'build_env_vectors_nb_core',
    'build_env_vectors_np_core',
    'squared_distance_matrix_nb_core',
    'squared_distance_matrix_np_core',
    'greedy_assignment_nb_core',
    'greedy_assignment_np_core',
    'optimal_assignment_np_core',
    'match_pairs_greedy_nb_core',
    'match_pairs_np_core',
]
