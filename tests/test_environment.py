import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from ENVtools.funcs.match_env import (
    Correspondence,
    EnvDisjointSet,
    Environment,
    InvalidArgumentError,
    OutOfCapacityError,
    UNMATCHED,
)

X_, Y_, Z_ = np.eye(3)


def env(vectors, num_neigh=3, env_ind=0, is_ghost=False):
    return Environment.from_vectors(
        np.asarray(vectors, dtype=np.float64), num_neigh, env_ind=env_ind,
        is_ghost=is_ghost, dtype=np.float64)


class TestEnvironment:

    def test_add_vec(self):
        e = Environment(4)
        e.add_vec([1.0, 2.0, 3.0])
        e.add_vec([0.0, 0.0, 1.0])
        assert e.num_vecs == 2
        assert e.vec_ind == [0, 1]
        assert_allclose(e.vecs, [[1.0, 2.0, 3.0], [0.0, 0.0, 1.0]])

    def test_capacity(self):
        e = Environment(2)
        e.add_vec(X_)
        e.add_vec(Y_)
        with pytest.raises(OutOfCapacityError):
            e.add_vec(Z_)
        assert e.num_vecs == 2

    def test_from_vectors_capacity(self):
        with pytest.raises(OutOfCapacityError):
            Environment.from_vectors(np.eye(3), 2)

    def test_vecs_is_read_only(self):
        e = env([X_, Y_])
        with pytest.raises(ValueError):
            e.vecs[0, 0] = 5.0

    def test_rejects_bad_vector(self):
        with pytest.raises(InvalidArgumentError):
            Environment(3).add_vec([1.0, 2.0])

    def test_copy_is_independent(self):
        e = env([X_, Y_], env_ind=4)
        c = e.copy()
        c.add_vec(Z_)
        assert e.num_vecs == 2
        assert c.num_vecs == 3
        assert c.env_ind == 4

    def test_frame_vectors_with_unreconciled_slot(self):
        e = env([X_, Y_])
        e.vec_ind = [1, UNMATCHED, 0]
        vecs, filled = e.frame_vectors(3)
        assert_allclose(vecs, [Y_, [0.0, 0.0, 0.0], X_])
        assert_array_equal(filled, [True, False, True])


class TestCorrespondence:

    def test_identity(self):
        c = Correspondence.identity(3)
        assert len(c) == 3
        assert c.to_dict() == {0: 0, 1: 1, 2: 2}
        assert c.covers(3)

    def test_empty_is_falsy(self):
        c = Correspondence.empty(3, 3)
        assert not c
        assert len(c) == 0
        assert c.to_dict() == {}
        assert c.get(1) is None
        with pytest.raises(KeyError):
            c[1]

    def test_inverse(self):
        c = Correspondence([2, UNMATCHED, 0], 4)
        inv = c.inverse()
        assert inv.num_sources == 4
        assert inv.num_targets == 3
        assert inv.to_dict() == {0: 2, 2: 0}
        assert inv.inverse() == c
        assert not c.covers(3)
        assert c.covers(1)

    def test_from_pairs(self):
        c = Correspondence.from_pairs([(0, 1), (1, 0)], 2, 2)
        assert c[0] == 1
        assert c[1] == 0
        with pytest.raises(InvalidArgumentError):
            Correspondence.from_pairs([(0, 1), (0, 0)], 2, 2)

    def test_rejects_non_injective(self):
        with pytest.raises(InvalidArgumentError):
            Correspondence([1, 1], 2)

    def test_rejects_out_of_range(self):
        with pytest.raises(InvalidArgumentError):
            Correspondence([0, 3], 3)


class TestEnvDisjointSet:

    def test_singletons(self):
        envs = [env([X_]), env([Y_]), env([Z_])]
        dj = EnvDisjointSet(3, envs)
        assert len(dj) == 3
        for m in range(3):
            assert dj.find(m) == m
            assert dj.find_set(m) == [m]

    def test_rejects_mismatched_capacity(self):
        with pytest.raises(InvalidArgumentError):
            EnvDisjointSet(4, [env([X_], num_neigh=3)])

    def test_find_out_of_range(self):
        dj = EnvDisjointSet(3, [env([X_])])
        with pytest.raises(InvalidArgumentError):
            dj.find(1)

    def test_environments_are_frozen(self):
        e = env([X_])
        EnvDisjointSet(3, [e])
        with pytest.raises(InvalidArgumentError):
            e.add_vec(Y_)

    def test_find_is_idempotent_and_transitive(self):
        rng = np.random.default_rng(0)
        n = 30
        dj = EnvDisjointSet(3, [env([X_, Y_], env_ind=m) for m in range(n)])
        for _ in range(20):
            a, b = rng.integers(0, n, size=2)
            dj.merge(a, b, Correspondence.identity(2))

        roots = [dj.find(x) for x in range(n)]
        for x in range(n):
            assert dj.find(roots[x]) == roots[x]
            members = dj.find_set(x)
            assert x in members
            assert all(dj.find(y) == roots[x] for y in members)
        for a in range(n):
            for b in range(n):
                assert (roots[a] == roots[b]) == (b in dj.find_set(a))

    def test_merge_is_noop_within_a_class(self):
        dj = EnvDisjointSet(3, [env([X_]), env([X_])])
        root = dj.merge(0, 1, Correspondence.identity(1))
        rank = dj.rank.copy()
        assert dj.merge(1, 0, Correspondence.identity(1)) == root
        assert_array_equal(dj.rank, rank)
        assert dj.elements[1].vec_ind == [0]

    def test_merge_rejects_wrong_correspondence_shape(self):
        dj = EnvDisjointSet(3, [env([X_, Y_]), env([X_, Y_])])
        with pytest.raises(InvalidArgumentError):
            dj.merge(0, 1, Correspondence.identity(3))

    def test_union_by_rank(self):
        dj = EnvDisjointSet(3, [env([X_], env_ind=m) for m in range(3)])
        dj.merge(1, 2, Correspondence.identity(1))
        assert dj.find(2) == 1
        dj.merge(0, 2, Correspondence.identity(1))
        # the taller tree (rooted at 1) survives
        assert dj.find(0) == 1
        assert dj.elements[0].env_ind == 1
        assert dj.find_set(0) == [0, 1, 2]

    def test_avg_env_of_singleton_is_unchanged(self):
        vectors = np.array([[0.3, -1.2, 0.7], [1.0, 0.5, -0.25]])
        dj = EnvDisjointSet(3, [env(vectors)])
        expected = np.zeros((3, 3))
        expected[:2] = vectors
        assert_array_equal(dj.get_avg_env(0), expected)
        assert_array_equal(dj.get_individual_env(0), expected)
        assert_array_equal(dj.get_avg_env_counts(0), [1, 1, 0])

    def test_merge_reindexes_losing_side(self):
        a = env([X_, Y_, Z_])
        b = env([1.2 * Z_, 1.2 * X_, 1.2 * Y_])
        dj = EnvDisjointSet(3, [a, b])
        dj.merge(0, 1, Correspondence([1, 2, 0], 3))

        assert dj.find(1) == 0
        assert b.vec_ind == [1, 2, 0]
        assert_allclose(dj.get_individual_env(1), 1.2 * np.eye(3))
        assert_allclose(dj.get_avg_env(0), 1.1 * np.eye(3))
        assert_allclose(dj.get_avg_env(1), 1.1 * np.eye(3))

    @pytest.mark.parametrize("anchor, forward", [
        (1, [1, 2, 0]),  # compare a with the root of the other class
        (2, [2, 0, 1]),  # compare a with a non-root member
    ])
    def test_merge_into_taller_tree_uses_its_frame(self, anchor, forward):
        a = env([X_, Y_, Z_])
        b = env([1.2 * Z_, 1.2 * X_, 1.2 * Y_])
        c = env([1.4 * Y_, 1.4 * Z_, 1.4 * X_])
        dj = EnvDisjointSet(3, [a, b, c])
        dj.merge(1, 2, Correspondence([1, 2, 0], 3))
        dj.merge(0, anchor, Correspondence(forward, 3))

        assert dj.find(0) == 1
        assert a.vec_ind == [2, 0, 1]
        # the frame of b is (z, x, y)
        expected = 1.2 * np.array([Z_, X_, Y_])
        for m in range(3):
            assert_allclose(dj.get_avg_env(m), expected)
        assert_allclose(dj.get_individual_env(0), np.array([Z_, X_, Y_]))

    def test_unmapped_vectors_are_dropped(self):
        a = env([X_, Y_, Z_])
        d = env([1.2 * Y_, 1.2 * X_])
        dj = EnvDisjointSet(3, [a, d])
        dj.merge(0, 1, Correspondence([1, 0, UNMATCHED], 2))

        assert d.vec_ind == [1, 0, UNMATCHED]
        assert_allclose(dj.get_avg_env(0), [1.1 * X_, 1.1 * Y_, Z_])
        assert_array_equal(dj.get_avg_env_counts(0), [2, 2, 1])

    def test_smaller_survivor_drops_extra_slots(self):
        a = env([X_, Y_, Z_])
        d = env([1.2 * Y_, 1.2 * X_])
        e = env([1.2 * Y_, 1.2 * X_])
        dj = EnvDisjointSet(3, [a, d, e])
        dj.merge(1, 2, Correspondence.identity(2))
        dj.merge(0, 1, Correspondence([1, 0, UNMATCHED], 2))

        assert dj.find(0) == 1
        assert a.vec_ind == [1, 0]
        assert_allclose(dj.get_avg_env(0), [(1.2 + 1.2 + 1.0) / 3 * Y_, (1.2 + 1.2 + 1.0) / 3 * X_, [0, 0, 0]])
        assert_array_equal(dj.get_avg_env_counts(0), [3, 3, 0])

    def test_ghosts_are_left_out_of_averages(self):
        ghost = env([2.0 * X_, 2.0 * Y_], is_ghost=True)
        particle = env([X_, Y_])
        dj = EnvDisjointSet(3, [ghost, particle])
        assert_allclose(dj.get_avg_env(0)[:2], [2.0 * X_, 2.0 * Y_])

        dj.merge(0, 1, Correspondence.identity(2))
        assert_allclose(dj.get_avg_env(0)[:2], [X_, Y_])
        assert_array_equal(dj.get_avg_env_counts(0), [1, 1, 0])
