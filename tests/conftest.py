import numpy as np
import pytest


def square_lattice(n, spacing=1.0):
    """n x n square lattice in the z = 0 plane, centred on the origin."""
    coords = (np.arange(n) - n // 2) * spacing
    xx, yy = np.meshgrid(coords, coords, indexing='ij')
    return np.column_stack((xx.ravel(), yy.ravel(), np.zeros(n * n)))


def cubic_lattice(n, spacing=1.0):
    """n x n x n simple cubic lattice centred on the origin."""
    coords = (np.arange(n) - n // 2) * spacing
    xx, yy, zz = np.meshgrid(coords, coords, coords, indexing='ij')
    return np.column_stack((xx.ravel(), yy.ravel(), zz.ravel()))


@pytest.fixture
def unit_vectors():
    return np.eye(3)


@pytest.fixture
def plus_shape():
    """A centre particle with four arms at unit distance, in the z = 0 plane."""
    return np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [-1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, -1.0, 0.0],
    ])
