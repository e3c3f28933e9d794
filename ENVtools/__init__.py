"""
ENVtools

Local-environment analysis of particle snapshots: clustering particles by the
geometry of their nearest neighbors and matching neighborhoods against a
reference motif.
"""

__version__ = "0.1.0"
