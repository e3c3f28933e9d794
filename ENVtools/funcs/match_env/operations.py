"""
ENVtools Local-Environment Matching Module

This module clusters particles by the similarity of their local neighbor
geometry, and tests particle neighborhoods against a reference motif. Two
environments are similar when every vector of the smaller one can be paired
with a distinct vector of the other with squared difference below
threshold * rmax^2. Similar environments are joined in a disjoint set that
keeps the vectors of each class in a common order, so class environments can
be averaged.
"""

import warnings
import numpy as np
from joblib import Parallel, cpu_count, delayed
from typing import Dict
from .constants import *
from .core_functions import *
from .environment import Correspondence, EnvDisjointSet, Environment
from .exceptions import EmptyResultError, InvalidArgumentError
from ..locality import Box, NearestNeighbors


class MatchEnv():
    """
    Match-environment analysis of a particle snapshot.

    After creation, call cluster to group all particles by matching
    environment, or match_motif to test every particle against a motif. The
    accessors return the results of the last completed run.
    """

    def __init__(
        self,
        box: Box,
        rmax: float,
        k: int = DEFAULT_NUM_NEIGHBORS,
        matching: str = DEFAULT_MATCHING,
        precision: str = 'float32',
        use_numba: bool = True,
        n_jobs: int = -1,
        verbose: bool = False) -> None:
        """
        Initialize the analysis.

        Args:
            box: periodic simulation box
            rmax: cutoff radius; values near the first minimum of the rdf are
                  recommended. Also the length scale of the threshold.
            k: number of nearest neighbors defining an environment
            matching: vector assignment policy, 'optimal' (exact) or 'greedy'
            precision: numerical precision ('float32' or 'float64')
            use_numba: use the Numba kernels (NumPy fallbacks otherwise)
            n_jobs: joblib workers for pair evaluation (-1, the default, for all
                    cores; 1 to stay in-process)
            verbose: print progress
        """
        if rmax <= 0:
            raise InvalidArgumentError("rmax must be positive")
        if int(k) < 1:
            raise InvalidArgumentError("k must be at least 1")
        if matching not in MATCHING_METHODS:
            raise InvalidArgumentError(f"matching must be one of {MATCHING_METHODS}")
        if precision not in ['float32', 'float64']:
            raise InvalidArgumentError("precision must be 'float32' or 'float64'")
        if n_jobs == 0:
            raise InvalidArgumentError("n_jobs must be non-zero")

        self.box = box
        self.rmax = float(rmax)
        self.rmaxsq = self.rmax * self.rmax
        self.k = int(k)
        self.matching = matching
        self.precision = precision
        self.use_numba = use_numba
        self.n_jobs = n_jobs
        self.verbose = verbose

        if precision == 'float32':
            self.float_dtype = np.float32
            self.int_dtype = np.int32
        else:
            self.float_dtype = np.float64
            self.int_dtype = np.int64

        self._nn = NearestNeighbors(box, self.rmax, self.k, use_numba=use_numba)
        self._reset_results()

    ##########################################################################################
    # Configuration
    ##########################################################################################

    def _reset_results(self) -> None:
        self._Np = None
        self._num_clusters = None
        self._env_index = None
        self._env_by_cluster = None
        self._tot_env = None
        self._is_motif_run = False

    def set_box(self, box: Box) -> None:
        """
        Reset the simulation box. Rebinds the neighbor query and discards the
        results of earlier runs.
        """
        self.box = box
        self._nn = NearestNeighbors(box, self.rmax, self.k, use_numba=self.use_numba)
        self._reset_results()

    def rebind(self, box: Box) -> "MatchEnv":
        """
        New analysis with the same configuration bound to another box.
        """
        return MatchEnv(
            box,
            self.rmax,
            k=self.k,
            matching=self.matching,
            precision=self.precision,
            use_numba=self.use_numba,
            n_jobs=self.n_jobs,
            verbose=self.verbose)

    ##########################################################################################
    # Input validation
    ##########################################################################################

    def _check_points(
        self,
        points: np.ndarray,
        num_points: int = None,
        name: str = "points") -> np.ndarray:
        points = np.asarray(points)
        if points.ndim != 2 or points.shape[1] != 3:
            raise InvalidArgumentError(f"{name} must be an (N, 3) array")
        if num_points is not None and points.shape[0] != num_points:
            raise InvalidArgumentError(
                f"{name} holds {points.shape[0]} points but {num_points} were declared")
        return np.ascontiguousarray(points, dtype=self.float_dtype)

    def _check_threshold(self, threshold: float) -> None:
        if not THRESHOLD_MIN < threshold < THRESHOLD_MAX:
            warnings.warn(
                f"threshold={threshold} is outside ({THRESHOLD_MIN}, {THRESHOLD_MAX}); "
                "thresholds are in units of rmax^2 and only values in this range "
                "discriminate between environments",
                RuntimeWarning,
                stacklevel=3)

    ##########################################################################################
    # Environment construction
    ##########################################################################################

    def build_env(
        self,
        points: np.ndarray,
        i: int,
        env_ind: int,
        hard_r: bool = False) -> Environment:
        """
        Local environment of the particle indexed by i.

        Args:
            points: (N, 3) particle positions
            i: index of the particle
            env_ind: environment index given to the result
            hard_r: only keep neighbors closer than rmax

        Returns:
            Environment holding the wrapped displacement vectors to the
            neighbors of i, in neighbor order
        """
        points = self._check_points(points)
        if not 0 <= i < points.shape[0]:
            raise InvalidArgumentError(f"particle index {i} out of range for {points.shape[0]} points")

        env = Environment(self.k, env_ind=env_ind, dtype=self.float_dtype)
        for vec in self._nn.neighbors_of(points, i):
            if hard_r and np.dot(vec, vec) >= self.rmaxsq:
                continue
            env.add_vec(vec)
        return env

    def _build_environments(
        self,
        points: np.ndarray,
        hard_r: bool):
        """
        Neighbor list and environment vectors of every particle.
        """
        neighbors = self._nn.compute(points)
        box_size = np.ascontiguousarray(self.box.L, dtype=self.float_dtype)
        if self.use_numba:
            vectors, num_vecs = build_env_vectors_nb_core(
                points, neighbors, box_size, self.rmaxsq, bool(hard_r))
        else:
            vectors, num_vecs = build_env_vectors_np_core(
                points, neighbors, box_size, self.rmaxsq, bool(hard_r))
        return neighbors, vectors, num_vecs

    def _environments_from_arrays(
        self,
        vectors: np.ndarray,
        num_vecs: np.ndarray,
        offset: int = 0):
        return [
            Environment.from_vectors(
                vectors[i, :num_vecs[i]], self.k, env_ind=i + offset, dtype=self.float_dtype)
            for i in range(vectors.shape[0])
        ]

    ##########################################################################################
    # Similarity
    ##########################################################################################

    def _assign(
        self,
        vecs1: np.ndarray,
        vecs2: np.ndarray,
        threshold_sq: float):
        # writeable copies, the compiled kernels do not accept read-only views
        vecs1 = np.array(vecs1, dtype=self.float_dtype)
        vecs2 = np.array(vecs2, dtype=self.float_dtype)
        n1, n2 = vecs1.shape[0], vecs2.shape[0]

        if self.matching == MATCHING_GREEDY:
            if self.use_numba:
                forward = np.empty(n1, dtype=np.int64)
                matched = greedy_assignment_nb_core(vecs1, n1, vecs2, n2, float(threshold_sq), forward)
                return forward, matched
            return greedy_assignment_np_core(vecs1, vecs2, threshold_sq)

        cost = None
        if self.use_numba and n1 > 0 and n2 > 0:
            cost = squared_distance_matrix_nb_core(vecs1, vecs2)
        return optimal_assignment_np_core(vecs1, vecs2, threshold_sq, cost=cost)

    def is_similar(
        self,
        e1: Environment,
        e2: Environment,
        threshold_sq: float) -> Correspondence:
        """
        Is environment e1 similar to environment e2?

        Args:
            e1, e2: environments to compare
            threshold_sq: squared distance below which two vectors match

        Returns:
            Correspondence from the vector slots of e1 to those of e2 pairing
            every vector of the smaller environment; empty if none exists

        Passing the same object twice gives the identity for any threshold.
        A separate environment with equal vectors is still held to the strict
        threshold, so at threshold_sq = 0 it is not similar.
        """
        if e1 is e2:
            return Correspondence.identity(e1.num_vecs)

        forward, matched = self._assign(e1.vecs, e2.vecs, threshold_sq)
        if not matched:
            return Correspondence.empty(e1.num_vecs, e2.num_vecs)
        return Correspondence(forward, e2.num_vecs)

    def is_similar_points(
        self,
        ref_points1: np.ndarray,
        ref_points2: np.ndarray,
        num_ref: int,
        threshold_sq: float) -> Dict[int, int]:
        """
        Is the vector set ref_points1 similar to ref_points2?

        The arrays are used as environment vectors directly, without
        periodic wrapping.

        Returns:
            {slot in ref_points1: slot in ref_points2}, empty if not similar
        """
        ref_points1 = self._check_points(ref_points1, num_ref, name="ref_points1")
        ref_points2 = self._check_points(ref_points2, num_ref, name="ref_points2")
        e1 = Environment.from_vectors(ref_points1, num_ref, dtype=self.float_dtype)
        e2 = Environment.from_vectors(ref_points2, num_ref, dtype=self.float_dtype)
        return self.is_similar(e1, e2, threshold_sq).to_dict()

    def _candidate_pairs(
        self,
        neighbors: np.ndarray,
        global_search: bool) -> np.ndarray:
        """
        (P, 2) element ids to compare: every particle with each of its
        neighbors, or every unordered pair when global_search is set.
        """
        n = neighbors.shape[0]
        if global_search:
            rows, cols = np.triu_indices(n, k=1)
        else:
            rows = np.repeat(np.arange(n), neighbors.shape[1])
            cols = neighbors.ravel()
            valid = cols >= 0
            rows, cols = rows[valid], cols[valid]
        return np.ascontiguousarray(np.column_stack((rows, cols)), dtype=np.int64)

    def _match_pairs(
        self,
        vectors: np.ndarray,
        num_vecs: np.ndarray,
        pairs: np.ndarray,
        threshold_sq: float):
        """
        Correspondences for all candidate pairs. The comparisons only read
        the raw environments, so they run in parallel; the caller applies
        the merges in pair order.
        """
        n_pairs = pairs.shape[0]
        if n_pairs == 0:
            return np.empty((0, vectors.shape[1]), dtype=np.int64), np.zeros(0, dtype=bool)

        if self.matching == MATCHING_GREEDY and self.use_numba:
            return match_pairs_greedy_nb_core(vectors, num_vecs, pairs, float(threshold_sq))

        n_workers = cpu_count() if self.n_jobs < 0 else self.n_jobs
        n_chunks = max(1, min(n_pairs, CHUNKS_PER_WORKER * n_workers))
        results = Parallel(n_jobs=self.n_jobs)(
            delayed(match_pairs_np_core)(vectors, num_vecs, chunk, threshold_sq, self.matching)
            for chunk in np.array_split(pairs, n_chunks))

        forward = np.concatenate([r[0] for r in results], axis=0)
        matched = np.concatenate([r[1] for r in results], axis=0)
        return forward, matched

    ##########################################################################################
    # Analyses
    ##########################################################################################

    def cluster(
        self,
        points: np.ndarray,
        Np: int,
        threshold: float,
        hard_r: bool = False,
        global_search: bool = False) -> np.ndarray:
        """
        Cluster particles with matching environments.

        Each particle is compared with its k nearest neighbors (or with every
        other particle if global_search is set); similar pairs are joined.
        Clusters are the transitive closure of the tested pairs.

        Args:
            points: (Np, 3) particle positions
            Np: number of particles
            threshold: maximum squared vector difference for a match, in
                       units of rmax^2. Only values in (0, 2) make sense.
            hard_r: only use neighbors closer than rmax
            global_search: compare all pairs of particles

        Returns:
            cluster_labels: (Np,) cluster ids 0..num_clusters-1
        """
        self._check_threshold(threshold)
        points = self._check_points(points, Np)
        threshold_sq = threshold * self.rmaxsq

        neighbors, vectors, num_vecs = self._build_environments(points, hard_r)
        dj = EnvDisjointSet(self.k, self._environments_from_arrays(vectors, num_vecs))

        pairs = self._candidate_pairs(neighbors, global_search)
        if self.verbose:
            print(f"cluster: comparing {pairs.shape[0]} candidate pairs for {points.shape[0]} particles")
        forward, matched = self._match_pairs(vectors, num_vecs, pairs, threshold_sq)

        n_merges = 0
        for p in np.flatnonzero(matched):
            i, j = int(pairs[p, 0]), int(pairs[p, 1])
            if dj.find(i) == dj.find(j):
                continue
            dj.merge(i, j, Correspondence(forward[p, :num_vecs[i]], num_vecs[j]))
            n_merges += 1

        if self.verbose:
            print(f"cluster: {n_merges} merges applied")
        self.populate_env(dj, relabel=True)
        return self.get_clusters()

    def match_motif(
        self,
        points: np.ndarray,
        Np: int,
        ref_points: np.ndarray,
        num_ref: int,
        threshold: float,
        hard_r: bool = False) -> np.ndarray:
        """
        Match every particle's environment against a motif.

        The motif is a ghost environment built from the raw ref_points
        vectors. Particles are only compared with the motif, never with each
        other. Matching particles form cluster MOTIF_CLUSTER (0); every other
        particle gets a cluster of its own.

        Args:
            points: (Np, 3) particle positions
            Np: number of particles
            ref_points: (num_ref, 3) motif vectors
            num_ref: number of motif vectors (at most k)
            threshold: maximum squared vector difference for a match, in
                       units of rmax^2. Only values in (0, 2) make sense.
            hard_r: only use neighbors closer than rmax

        Returns:
            matches: (Np,) boolean mask of particles matching the motif
        """
        self._check_threshold(threshold)
        points = self._check_points(points, Np)
        ref_points = self._check_points(ref_points, num_ref, name="ref_points")
        threshold_sq = threshold * self.rmaxsq

        motif = Environment.from_vectors(
            ref_points, self.k, env_ind=MOTIF_CLUSTER, is_ghost=True, dtype=self.float_dtype)
        _, vectors, num_vecs = self._build_environments(points, hard_r)
        dj = EnvDisjointSet(self.k, [motif] + self._environments_from_arrays(vectors, num_vecs, offset=1))

        # the motif is element 0, particle i is element i + 1
        all_vectors = np.zeros((points.shape[0] + 1, self.k, 3), dtype=self.float_dtype)
        all_vectors[0, :num_ref] = ref_points
        all_vectors[1:] = vectors
        all_num_vecs = np.concatenate(([num_ref], num_vecs)).astype(np.int64)
        pairs = np.column_stack((
            np.zeros(points.shape[0], dtype=np.int64),
            np.arange(1, points.shape[0] + 1, dtype=np.int64)))
        pairs = np.ascontiguousarray(pairs)

        if self.verbose:
            print(f"match_motif: comparing {points.shape[0]} particles against a {num_ref}-vector motif")
        forward, matched = self._match_pairs(all_vectors, all_num_vecs, pairs, threshold_sq)

        for p in np.flatnonzero(matched):
            dj.merge(0, int(pairs[p, 1]), Correspondence(forward[p, :num_ref], all_num_vecs[pairs[p, 1]]))

        if self.verbose:
            print(f"match_motif: {int(np.count_nonzero(matched))} of {points.shape[0]} particles match")
        self.populate_env(dj, relabel=True)
        self._is_motif_run = True
        return self.get_matches()

    def populate_env(
        self,
        dj: EnvDisjointSet,
        relabel: bool = True) -> None:
        """
        Publish the classes of dj as the analysis results.

        Walks the elements in id order and gives each new root the next
        cluster id (or the root's element id when relabel is False). Ghost
        elements take part in the labelling but get no per-particle entry.
        Nothing is written until every result has been computed.
        """
        label_of_root = {}
        env_index = []
        tot_env = []
        for m in range(len(dj)):
            root = dj.find(m)
            if root not in label_of_root:
                label_of_root[root] = len(label_of_root) if relabel else root
            if dj.elements[m].is_ghost:
                continue
            env_index.append(label_of_root[root])
            tot_env.append(dj.get_individual_env(m))

        env_by_cluster = {label: dj.get_avg_env(root) for root, label in label_of_root.items()}
        if tot_env:
            tot_env = np.stack(tot_env).astype(self.float_dtype)
        else:
            tot_env = np.zeros((0, self.k, 3), dtype=self.float_dtype)

        self._Np = len(env_index)
        self._num_clusters = len(label_of_root)
        self._env_index = np.array(env_index, dtype=self.int_dtype)
        self._env_by_cluster = env_by_cluster
        self._tot_env = tot_env
        self._is_motif_run = False

    ##########################################################################################
    # Accessors
    ##########################################################################################

    def _require_results(self) -> None:
        if self._env_index is None:
            raise EmptyResultError("no completed cluster or match_motif run")

    def get_clusters(self) -> np.ndarray:
        """Cluster id of every particle."""
        self._require_results()
        return self._env_index.copy()

    def get_environment(self, i: int) -> np.ndarray:
        """
        (k, 3) vectors of the environment of cluster i, averaged over the
        cluster's particles.
        """
        self._require_results()
        if i not in self._env_by_cluster:
            raise InvalidArgumentError(f"cluster {i} does not exist")
        return self._env_by_cluster[i].copy()

    def get_tot_environment(self) -> np.ndarray:
        """(Np, k, 3) environment of every particle in its cluster's frame."""
        self._require_results()
        return self._tot_env.copy()

    def get_np(self) -> int:
        self._require_results()
        return self._Np

    def get_num_clusters(self) -> int:
        self._require_results()
        return self._num_clusters

    def get_num_neighbors(self) -> int:
        self._require_results()
        return self.k

    def get_cluster_sizes(self) -> np.ndarray:
        """Number of particles in each cluster."""
        self._require_results()
        return np.bincount(self._env_index.astype(np.int64), minlength=self._num_clusters)

    def get_matches(self) -> np.ndarray:
        """Boolean mask of the particles matching the motif of the last match_motif run."""
        self._require_results()
        if not self._is_motif_run:
            raise EmptyResultError("the last completed run was not match_motif")
        return self._env_index == MOTIF_CLUSTER
