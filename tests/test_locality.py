import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from ENVtools.funcs.locality import Box, NearestNeighbors, NO_NEIGHBOR
from ENVtools.funcs.locality import strip_self_nb_core, strip_self_np_core

from conftest import cubic_lattice


class TestBox:

    def test_defaults_to_cube(self):
        box = Box(5.0)
        assert_array_equal(box.L, [5.0, 5.0, 5.0])
        assert not box.is2D
        assert box.volume == pytest.approx(125.0)

    def test_square_box_is_2d(self):
        box = Box.square(4.0)
        assert box.is2D
        assert box.num_of_dims == 2
        assert box.volume == pytest.approx(16.0)

    @pytest.mark.parametrize("lengths", [(0.0, 1.0, 1.0), (1.0, -1.0, 1.0), (1.0, 1.0, -2.0)])
    def test_rejects_bad_lengths(self, lengths):
        with pytest.raises(ValueError):
            Box(*lengths)

    def test_wrap_minimum_image(self):
        box = Box.cube(10.0)
        assert_allclose(box.wrap([6.0, 0.0, -6.0]), [-4.0, 0.0, 4.0])
        assert_allclose(box.wrap([16.0, 2.0, -14.0]), [-4.0, 2.0, -4.0])

    def test_wrap_half_open_interval(self):
        box = Box.cube(10.0)
        assert_allclose(box.wrap([5.0, -5.0, 0.0]), [-5.0, -5.0, 0.0])

    def test_wrap_keeps_shape_and_dtype(self):
        box = Box.cube(3.0)
        vectors = np.ones((7, 3), dtype=np.float32) * 2.0
        wrapped = box.wrap(vectors)
        assert wrapped.shape == (7, 3)
        assert wrapped.dtype == np.float32
        assert_allclose(wrapped, -np.ones((7, 3)))

    def test_2d_box_leaves_z_alone(self):
        box = Box.square(4.0)
        assert_allclose(box.wrap([3.0, 0.0, 7.0]), [-1.0, 0.0, 7.0])

    def test_shift_to_box(self):
        box = Box.cube(4.0)
        points = np.array([[-2.0, 0.0, 1.999], [1.0, -1e-17, -2.0]])
        shifted = box.shift_to_box(points)
        assert np.all(shifted >= 0.0)
        assert np.all(shifted < 4.0)
        assert_allclose(shifted[0], [0.0, 2.0, 3.999])


class TestNearestNeighbors:

    def test_simple_cubic_neighbors(self):
        points = cubic_lattice(4)
        nn = NearestNeighbors(Box.cube(4.0), rmax=1.5, num_neighbors=6)
        neighbors = nn.compute(points)

        assert neighbors.shape == (64, 6)
        assert np.all(neighbors != np.arange(64)[:, None])
        for i in (0, 21, 63):
            vecs = nn.box.wrap(points[neighbors[i]] - points[i])
            assert_allclose(np.linalg.norm(vecs, axis=1), np.ones(6))
            assert_allclose(vecs.sum(axis=0), np.zeros(3), atol=1e-12)

    def test_neighbors_of_matches_compute(self):
        rng = np.random.default_rng(3)
        points = rng.uniform(-5.0, 5.0, size=(50, 3))
        nn = NearestNeighbors(Box.cube(10.0), rmax=2.0, num_neighbors=5)
        neighbors = nn.compute(points)

        vecs = nn.neighbors_of(points, 7)
        expected = nn.box.wrap(points[neighbors[7]] - points[7])
        assert_allclose(vecs, expected)
        dist = np.linalg.norm(vecs, axis=1)
        assert np.all(np.diff(dist) >= 0)

    def test_periodic_images_are_found(self):
        points = np.array([[-4.9, 0.0, 0.0], [4.9, 0.0, 0.0], [0.0, 0.0, 0.0]])
        nn = NearestNeighbors(Box.cube(10.0), rmax=1.0, num_neighbors=1)
        vecs = nn.neighbors_of(points, 0)
        assert_allclose(vecs, [[-0.2, 0.0, 0.0]], atol=1e-12)

    def test_fewer_points_than_neighbors(self):
        points = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        nn = NearestNeighbors(Box.cube(10.0), rmax=2.0, num_neighbors=6)
        neighbors = nn.compute(points)
        assert neighbors.shape == (3, 6)
        assert np.all(np.sum(neighbors != NO_NEIGHBOR, axis=1) == 2)
        assert nn.neighbors_of(points, 0).shape == (2, 3)

    def test_single_point_has_no_neighbors(self):
        nn = NearestNeighbors(Box.cube(10.0), rmax=2.0, num_neighbors=4)
        neighbors = nn.compute(np.zeros((1, 3)))
        assert_array_equal(neighbors, np.full((1, 4), NO_NEIGHBOR))
        assert nn.neighbors_of(np.zeros((1, 3)), 0).shape == (0, 3)

    def test_numpy_path_matches_numba(self):
        rng = np.random.default_rng(11)
        points = rng.uniform(-5.0, 5.0, size=(40, 3))
        box = Box.cube(10.0)
        nb = NearestNeighbors(box, 2.0, 6, use_numba=True).compute(points)
        npy = NearestNeighbors(box, 2.0, 6, use_numba=False).compute(points)
        assert_array_equal(nb, npy)

    def test_strip_self_when_self_is_not_first(self):
        idx = np.array([[1, 0, 2], [0, 1, 2], [0, 1, 3]], dtype=np.int64)
        expected = np.array([[1, 2], [0, 2], [0, 1]])
        assert_array_equal(strip_self_nb_core(idx, 2), expected)
        assert_array_equal(strip_self_np_core(idx, 2), expected)

    def test_neighbors_of_rejects_bad_index(self):
        nn = NearestNeighbors(Box.cube(10.0), rmax=2.0, num_neighbors=4)
        with pytest.raises(IndexError):
            nn.neighbors_of(np.zeros((3, 3)), 3)

    def test_get_neighbor_list_before_compute(self):
        nn = NearestNeighbors(Box.cube(10.0), rmax=2.0, num_neighbors=4)
        with pytest.raises(RuntimeError):
            nn.get_neighbor_list()

    @pytest.mark.parametrize("rmax, k", [(0.0, 4), (1.0, 0)])
    def test_configure_validates(self, rmax, k):
        with pytest.raises(ValueError):
            NearestNeighbors(Box.cube(10.0), rmax=rmax, num_neighbors=k)
