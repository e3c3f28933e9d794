"""
Constants for the periodic box and nearest-neighbor queries.
"""

##############################################################################
# Global constants
##############################################################################

# Coordinate indices
X, Y, Z = 0, 1, 2

# Default parameters
DEFAULT_NUM_NEIGHBORS = 12
NO_NEIGHBOR = -1  # padding in neighbor lists when fewer than k points exist
