"""
Local environments and the disjoint set that clusters them.

An Environment holds the displacement vectors from one particle to its
neighbors. EnvDisjointSet is a union-find over environments that also keeps
the vectors of every member of a class in a common slot order (the class
frame, defined by the raw vector order of the class root), so that class
members can be averaged slot by slot.
"""

import numpy as np
from typing import Dict, List, Tuple
from .constants import *
from .exceptions import InvalidArgumentError, OutOfCapacityError


class Environment():
    """
    Up to num_neigh displacement vectors describing one particle's neighbors.

    Attributes:
        env_ind: id of the equivalence class the environment belongs to
        num_neigh: capacity, fixed at construction
        num_vecs: number of vectors added so far
        vec_ind: class-frame slot -> raw vector index (UNMATCHED if the slot
                 could not be reconciled during a merge)
        is_ghost: reference/bookkeeping environment, left out of per-particle
                  results
    """

    def __init__(
        self,
        num_neigh: int,
        env_ind: int = 0,
        is_ghost: bool = False,
        dtype: type = np.float32) -> None:
        if int(num_neigh) < 0:
            raise InvalidArgumentError("num_neigh must be non-negative")
        self.num_neigh = int(num_neigh)
        self.env_ind = int(env_ind)
        self.is_ghost = bool(is_ghost)
        self.num_vecs = 0
        self.vec_ind: List[int] = []
        self._vecs = np.zeros((self.num_neigh, 3), dtype=dtype)
        self._frozen = False

    @classmethod
    def from_vectors(
        cls,
        vectors: np.ndarray,
        num_neigh: int,
        env_ind: int = 0,
        is_ghost: bool = False,
        dtype: type = np.float32) -> "Environment":
        """
        Build an environment from an (n, 3) array of vectors, in order.
        """
        vectors = np.asarray(vectors)
        if vectors.ndim != 2 or vectors.shape[1] != 3:
            raise InvalidArgumentError("vectors must be an (n, 3) array")
        if vectors.shape[0] > int(num_neigh):
            raise OutOfCapacityError(
                f"{vectors.shape[0]} vectors offered to an environment of capacity {num_neigh}")
        env = cls(num_neigh, env_ind=env_ind, is_ghost=is_ghost, dtype=dtype)
        for vec in vectors:
            env.add_vec(vec)
        return env

    @property
    def vecs(self) -> np.ndarray:
        """Read-only view of the filled vectors, in insertion order."""
        view = self._vecs[:self.num_vecs]
        view.flags.writeable = False
        return view

    @property
    def dtype(self):
        return self._vecs.dtype

    def add_vec(self, vec) -> None:
        """
        Append a displacement vector.
        """
        if self._frozen:
            raise InvalidArgumentError("cannot add vectors to an environment owned by a disjoint set")
        if self.num_vecs >= self.num_neigh:
            raise OutOfCapacityError(
                f"environment already holds {self.num_vecs} of {self.num_neigh} vectors")
        vec = np.asarray(vec, dtype=self._vecs.dtype)
        if vec.shape != (3,):
            raise InvalidArgumentError("vec must have 3 components")
        self._vecs[self.num_vecs] = vec
        self.vec_ind.append(self.num_vecs)
        self.num_vecs += 1

    def freeze(self) -> None:
        self._frozen = True

    def frame_vectors(self, size: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Vectors laid out in class-frame order.

        Args:
            size: number of frame slots returned

        Returns:
            vectors: (size, 3) vectors, zero in unreconciled or missing slots
            filled: (size,) mask of slots holding a vector
        """
        out = np.zeros((size, 3), dtype=self._vecs.dtype)
        filled = np.zeros(size, dtype=bool)
        ind = np.asarray(self.vec_ind[:size], dtype=np.int64)
        valid = ind != UNMATCHED
        slots = np.flatnonzero(valid)
        out[slots] = self._vecs[ind[valid]]
        filled[slots] = True
        return out, filled

    def copy(self) -> "Environment":
        env = Environment(self.num_neigh, env_ind=self.env_ind, is_ghost=self.is_ghost, dtype=self.dtype)
        env._vecs[:] = self._vecs
        env.num_vecs = self.num_vecs
        env.vec_ind = list(self.vec_ind)
        return env

    def __repr__(self) -> str:
        ghost = ", ghost" if self.is_ghost else ""
        return f"Environment(env_ind={self.env_ind}, {self.num_vecs}/{self.num_neigh} vectors{ghost})"


class Correspondence():
    """
    Partial one-to-one map between the vector slots of two environments.

    Stored as a forward array (source slot -> target slot or UNMATCHED) and
    the matching reverse-lookup array. An empty correspondence means the two
    environments are not similar.
    """

    def __init__(
        self,
        forward,
        num_targets: int) -> None:
        forward = np.array(forward, dtype=np.int64).reshape(-1)
        num_targets = int(num_targets)
        mapped = forward != UNMATCHED
        targets = forward[mapped]
        if np.any(targets < 0) or np.any(targets >= num_targets):
            raise InvalidArgumentError("correspondence target out of range")
        if np.unique(targets).size != targets.size:
            raise InvalidArgumentError("correspondence must be one-to-one")

        reverse = np.full(num_targets, UNMATCHED, dtype=np.int64)
        reverse[targets] = np.flatnonzero(mapped)
        self.forward = forward
        self.reverse = reverse

    @classmethod
    def identity(cls, n: int) -> "Correspondence":
        return cls(np.arange(n), n)

    @classmethod
    def empty(cls, num_sources: int, num_targets: int) -> "Correspondence":
        return cls(np.full(num_sources, UNMATCHED), num_targets)

    @classmethod
    def from_pairs(cls, pairs, num_sources: int, num_targets: int) -> "Correspondence":
        forward = np.full(num_sources, UNMATCHED, dtype=np.int64)
        for src, dst in pairs:
            if not 0 <= src < num_sources:
                raise InvalidArgumentError("correspondence source out of range")
            if forward[src] != UNMATCHED:
                raise InvalidArgumentError(f"source slot {src} mapped twice")
            forward[src] = dst
        return cls(forward, num_targets)

    @property
    def num_sources(self) -> int:
        return self.forward.shape[0]

    @property
    def num_targets(self) -> int:
        return self.reverse.shape[0]

    def __len__(self) -> int:
        return int(np.count_nonzero(self.forward != UNMATCHED))

    def __bool__(self) -> bool:
        return len(self) > 0

    def __getitem__(self, src: int) -> int:
        dst = self.get(src)
        if dst is None:
            raise KeyError(src)
        return dst

    def get(self, src: int, default=None):
        if not 0 <= src < self.num_sources:
            return default
        dst = int(self.forward[src])
        return default if dst == UNMATCHED else dst

    def inverse(self) -> "Correspondence":
        return Correspondence(self.reverse, self.num_sources)

    def covers(self, n: int) -> bool:
        """True when source slots 0..n-1 are all mapped."""
        return n <= self.num_sources and bool(np.all(self.forward[:n] != UNMATCHED))

    def pairs(self) -> List[Tuple[int, int]]:
        src = np.flatnonzero(self.forward != UNMATCHED)
        return [(int(s), int(self.forward[s])) for s in src]

    def to_dict(self) -> Dict[int, int]:
        return dict(self.pairs())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Correspondence):
            return NotImplemented
        return self.num_targets == other.num_targets and np.array_equal(self.forward, other.forward)

    def __repr__(self) -> str:
        return f"Correspondence({self.to_dict()})"


class EnvDisjointSet():
    """
    Union-find over environments with vector re-indexing on merge.

    Elements live in an arena addressed by integer id; parent and rank are
    parallel integer arrays. The root of a class defines its frame: slot j of
    the frame is the root's raw vector j, and every member's vec_ind points
    slot j at the member's vector in the same direction.
    """

    def __init__(
        self,
        num_neigh: int,
        environments: List[Environment]) -> None:
        """
        Args:
            num_neigh: capacity shared by all environments
            environments: one environment per element, index = element id
        """
        self.num_neigh = int(num_neigh)
        self.elements = list(environments)
        for env in self.elements:
            if env.num_neigh != self.num_neigh:
                raise InvalidArgumentError(
                    f"environment capacity {env.num_neigh} does not match num_neigh={self.num_neigh}")
            env.freeze()

        n = len(self.elements)
        self.parent = np.arange(n, dtype=np.int64)
        self.rank = np.zeros(n, dtype=np.int64)
        self._members = {m: [m] for m in range(n)}

    def __len__(self) -> int:
        return len(self.elements)

    def _check(self, c: int) -> int:
        c = int(c)
        if not 0 <= c < len(self.elements):
            raise InvalidArgumentError(f"element {c} out of range for {len(self.elements)} elements")
        return c

    def find(self, c: int) -> int:
        """
        Root of the class containing c, with path compression.
        """
        c = self._check(c)
        parent = self.parent
        root = c
        while parent[root] != root:
            root = parent[root]

        current = c
        while parent[current] != current:
            next_node = parent[current]
            parent[current] = root
            current = next_node

        return int(root)

    def _slot_map(
        self,
        anchor_s: int,
        anchor_l: int,
        correspondence: Correspondence) -> List[int]:
        """
        For each slot of the surviving frame, the matching slot of the losing
        frame (UNMATCHED if none), going through the raw vectors of the two
        compared elements.
        """
        env_s = self.elements[anchor_s]
        env_l = self.elements[anchor_l]
        slot_of_raw_l = {raw: slot for slot, raw in enumerate(env_l.vec_ind) if raw != UNMATCHED}

        slot_map = []
        for raw_s in env_s.vec_ind:
            raw_l = UNMATCHED if raw_s == UNMATCHED else correspondence.get(raw_s, UNMATCHED)
            slot_map.append(slot_of_raw_l.get(raw_l, UNMATCHED))
        return slot_map

    def merge(
        self,
        a: int,
        b: int,
        correspondence: Correspondence) -> int:
        """
        Join the classes of a and b.

        Args:
            a, b: element ids
            correspondence: map from a's raw vector slots to b's raw slots

        Returns:
            root of the merged class
        """
        a = self._check(a)
        b = self._check(b)
        if correspondence.num_sources != self.elements[a].num_vecs or \
                correspondence.num_targets != self.elements[b].num_vecs:
            raise InvalidArgumentError(
                f"correspondence of shape ({correspondence.num_sources}, {correspondence.num_targets}) "
                f"does not fit environments with {self.elements[a].num_vecs} and "
                f"{self.elements[b].num_vecs} vectors")

        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return root_a

        # union by rank, ties go to a
        if self.rank[root_a] < self.rank[root_b]:
            survivor, loser = root_b, root_a
            slot_map = self._slot_map(b, a, correspondence.inverse())
        else:
            survivor, loser = root_a, root_b
            slot_map = self._slot_map(a, b, correspondence)
            if self.rank[root_a] == self.rank[root_b]:
                self.rank[root_a] += 1

        survivor_ind = self.elements[survivor].env_ind
        for m in self._members[loser]:
            env = self.elements[m]
            env.vec_ind = [env.vec_ind[q] if q != UNMATCHED else UNMATCHED for q in slot_map]
            env.env_ind = survivor_ind

        self.parent[loser] = survivor
        self._members[survivor].extend(self._members.pop(loser))
        return survivor

    def find_set(self, m: int) -> List[int]:
        """
        All element ids in the class containing m.
        """
        return sorted(self._members[self.find(m)])

    def _frame_sum(self, m: int) -> Tuple[np.ndarray, np.ndarray]:
        members = self.find_set(m)
        physical = [x for x in members if not self.elements[x].is_ghost]
        # a class made only of ghosts still has a well-defined environment
        if not physical:
            physical = members

        total = np.zeros((self.num_neigh, 3), dtype=np.float64)
        counts = np.zeros(self.num_neigh, dtype=np.int64)
        for x in physical:
            vecs, filled = self.elements[x].frame_vectors(self.num_neigh)
            total += vecs
            counts += filled
        return total, counts

    def get_avg_env(self, m: int) -> np.ndarray:
        """
        Slot-wise mean of the class's vectors, over its non-ghost members.

        Returns:
            (num_neigh, 3) array; slots no member fills are zero (see
            get_avg_env_counts)
        """
        total, counts = self._frame_sum(m)
        avg = np.zeros_like(total)
        filled = counts > 0
        avg[filled] = total[filled] / counts[filled, np.newaxis]
        return avg.astype(self.elements[m].dtype)

    def get_avg_env_counts(self, m: int) -> np.ndarray:
        """Number of members contributing to each slot of get_avg_env(m)."""
        return self._frame_sum(m)[1]

    def get_individual_env(self, m: int) -> np.ndarray:
        """
        Vectors of element m alone, in its class frame, as a (num_neigh, 3) array.
        """
        m = self._check(m)
        return self.elements[m].frame_vectors(self.num_neigh)[0]
