"""
ENVtools Locality

Periodic box and nearest-neighbor queries shared by the local-environment
analyses.
"""

from .box import Box
from .operations import NearestNeighbors
from .constants import DEFAULT_NUM_NEIGHBORS, NO_NEIGHBOR

from .core_functions import (
    wrap_component_nb_core,
    wrap_vectors_np_core,
    strip_self_nb_core,
    strip_self_np_core,
)

__all__ = [
    'Box',
    'NearestNeighbors',
    'DEFAULT_NUM_NEIGHBORS',
    'NO_NEIGHBOR',
    'wrap_component_nb_core',
    'wrap_vectors_np_core',
    'strip_self_nb_core',
    'strip_self_np_core',
]
