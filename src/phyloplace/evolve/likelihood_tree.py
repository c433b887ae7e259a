"""Likelihood evaluation on unrooted trees by Felsenstein pruning.

Costs are negative natural log-likelihoods. For every directed edge the
conditional cost of the subtree behind it is cached; the entries are
independent of the root so moving the root never invalidates them, while
changing a branch length invalidates exactly the entries whose subtree
contains that branch.
"""

from __future__ import annotations

import warnings
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import numpy

from phyloplace.core.alphabet import GAP_INDEX, NUM_STATES
from phyloplace.core.tree import TreeNode, UnrootedTree, make_unrooted_tree
from phyloplace.evolve.cost_cache import CostCache
from phyloplace.evolve.likelihood_tree_numba import dot_product_scaled, dot_scaled
from phyloplace.evolve.models import get_model

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.evolve.substitution_model import _SubstitutionModel
    from phyloplace.util.io import PathType


class LikelihoodTree(UnrootedTree):
    """an unrooted tree that evaluates the cost of its leaf sequences under a
    substitution model

    Parameters
    ----------
    nodes
        the tree nodes
    root
        id of the root node
    model
        a model name or instance, instances are copied
    """

    def __init__(self, nodes=(), root: int = 0, model="JC69") -> None:
        super().__init__(nodes=nodes, root=root)
        self._model = get_model(model)
        self._cache = CostCache(num_sites=0, num_states=NUM_STATES)

    @property
    def model(self) -> _SubstitutionModel:
        return self._model

    @property
    def cost_cache(self) -> CostCache:
        return self._cache

    def set_model(self, model) -> None:
        """attaches a copy of model and discards all cached costs"""
        self._model = get_model(model)
        self._cache.reset()

    def load_msa(self, msa: Mapping[str, str | numpy.ndarray]) -> int:
        assigned = super().load_msa(msa)
        self._cache.resize(self.num_align_sites)
        return assigned

    def reset_cost(self) -> None:
        """marks every cached cost as uncomputed"""
        self._cache.reset()

    def _cols(self, start: int = 0, end: int | None = None) -> slice:
        """slice for the inclusive column range [start, end]"""
        end = self.num_align_sites - 1 if end is None else end
        if not 0 <= start <= end < self.num_align_sites:
            msg = (
                f"column range [{start}, {end}] outside alignment of "
                f"{self.num_align_sites} sites"
            )
            raise ValueError(msg)
        return slice(start, end + 1)

    def _col_slice(self, j: int | None) -> slice:
        return self._cols() if j is None else self._cols(j, j)

    def _own_cost(self, x: int, cols: slice) -> numpy.ndarray:
        node = self._nodes[x]
        if node.base_cost is not None:
            return node.base_cost[:, cols]
        if node.seq is not None:
            return self._cache.leaf_cost[:, node.seq[cols]]
        num_cols = len(range(*cols.indices(self.num_align_sites)))
        return numpy.zeros((NUM_STATES, num_cols))

    def _incoming(self, x: int, exclude: int | None, cols: slice, psubs: dict):
        """dot products of the messages sent to x, other than from exclude"""
        for c in self._nodes[x].neighbours:
            if c == exclude:
                continue
            length = self._lengths[x, c]
            if length not in psubs:
                psubs[length] = self._model.calc_psub(length)
            yield dot_product_scaled(psubs[length], self._cache.get(c, x)[:, cols])

    def _ensure_messages(self, edges: Iterable[tuple[int, int]], cols: slice) -> None:
        """computes every uncomputed message the edges depend upon

        Dependencies are collected with an explicit stack, so deep trees do
        not hit the recursion limit.
        """
        cache = self._cache
        stack = [e for e in edges if not cache.is_evaluated(*e, cols)]
        order = []
        while stack:
            x, y = stack.pop()
            order.append((x, y))
            stack.extend(
                (c, x)
                for c in self._nodes[x].neighbours
                if c != y and not cache.is_evaluated(c, x, cols)
            )

        psubs = {}
        for x, y in reversed(order):
            if cache.is_evaluated(x, y, cols):
                continue
            result = self._own_cost(x, cols).copy()
            for incoming in self._incoming(x, y, cols, psubs):
                result += incoming
            cache.init_edge(x, y)[:, cols] = result

    def evaluate(self, node: int | None = None, j: int | None = None) -> None:
        """computes the messages sent to node by its children

        Parameters
        ----------
        node
            defaults to the root
        j
            a single column, all columns if None
        """
        node = self._root if node is None else node
        cols = self._col_slice(j)
        self._ensure_messages(((c, node) for c in self.children(node)), cols)

    def cost(self, node: int | None = None, j: int | None = None) -> numpy.ndarray:
        """per-state cost of the subtree at node

        Returns
        -------
        a (num states, num sites) array, or a num states vector if j is given
        """
        node = self._root if node is None else node
        cols = self._col_slice(j)
        parent = self._nodes[node].parent
        if parent is not None:
            self._ensure_messages([(node, parent)], cols)
            result = self._cache.get(node, parent)[:, cols].copy()
        else:
            result = self._full_cost(node, cols)
        return result[:, 0] if j is not None else result

    def _full_cost(self, node: int, cols: slice) -> numpy.ndarray:
        """cost of the whole tree conditioned on the states at node"""
        neighbours = self._nodes[node].neighbours
        self._ensure_messages(((c, node) for c in neighbours), cols)
        result = self._own_cost(node, cols).copy()
        for incoming in self._incoming(node, None, cols, {}):
            result += incoming
        return result

    def is_evaluated(self, u: int, v: int, j: int | None = None) -> bool:
        return self._cache.is_evaluated(u, v, j)

    def get_branch_cost(self, u: int, v: int) -> numpy.ndarray:
        """the cost matrix of the subtree on u's side of the u-v edge"""
        self._check_edge(u, v)
        self._ensure_messages([(u, v)], self._cols())
        return self._cache.get(u, v).copy()

    def site_costs(self, start: int = 0, end: int | None = None) -> numpy.ndarray:
        """per column tree cost over the inclusive range [start, end]"""
        if not self.num_align_sites:
            return numpy.zeros(0)
        cols = self._cols(start, end)
        return dot_scaled(self._model.motif_probs, self._full_cost(self._root, cols))

    def site_cost(self, j: int) -> float:
        return float(self.site_costs(j, j)[0])

    def tree_cost(self, start: int = 0, end: int | None = None) -> float:
        """negative log-likelihood of the columns in the inclusive range
        [start, end], the whole alignment by default"""
        return float(self.site_costs(start, end).sum())

    def _invalidate_away(self, previous: int | None, node: int) -> None:
        """resets every entry pointing away from node, not crossing previous"""
        stack = [(previous, node)]
        while stack:
            previous, x = stack.pop()
            for y in self._nodes[x].neighbours:
                if y == previous:
                    continue
                self._cache.reset(x, y)
                stack.append((x, y))

    def set_branch_length(self, u: int, v: int, length: float) -> None:
        """sets the u-v length, invalidating entries that depend on it"""
        super().set_branch_length(u, v, length)
        self._invalidate_away(u, v)
        self._invalidate_away(v, u)

    def optimize_branch_length(self, u: int, v: int, start: int = 0, end=None, **kw):
        from phyloplace.evolve.branch_length import optimize_branch_length

        return optimize_branch_length(self, u, v, start=start, end=end, **kw)

    def place_seq(self, seq, u: int, v: int, d0: float, **kw) -> LikelihoodTree:
        from phyloplace.evolve.placement import place_seq

        return place_seq(self, seq, u, v, d0, **kw)

    def get_model_freq_est(self) -> numpy.ndarray:
        """state frequencies over all observed leaf sequence positions"""
        counts = numpy.zeros(NUM_STATES)
        for node in self._nodes:
            if node.is_leaf() and node.seq is not None:
                observed = node.seq[node.seq < GAP_INDEX]
                counts += numpy.bincount(observed, minlength=NUM_STATES)[:NUM_STATES]
        total = counts.sum()
        if total == 0:
            return numpy.full(NUM_STATES, 1.0 / NUM_STATES)
        return counts / total

    def get_model_transition_set(self, method: str = "gojobori") -> list[numpy.ndarray]:
        """observed state transition counts for training a model

        Parameters
        ----------
        method
            'gojobori' compares each pair of leaves that share a parent,
            'goldman' compares reconstructed ancestral states along every
            edge. Case insensitive.

        Returns
        -------
        list of 4x4 count matrices
        """
        method = method.lower()
        if method == "gojobori":
            return self._transitions_gojobori()
        if method == "goldman":
            return self._transitions_goldman()
        msg = f"Unknown substitution model training method {method!r}"
        raise ValueError(msg)

    @staticmethod
    def _count_pairs(seq1: numpy.ndarray, seq2: numpy.ndarray) -> numpy.ndarray:
        observed = (seq1 < GAP_INDEX) & (seq2 < GAP_INDEX)
        D = numpy.zeros((NUM_STATES, NUM_STATES))
        numpy.add.at(D, (seq1[observed], seq2[observed]), 1)
        return D

    def _transitions_gojobori(self) -> list[numpy.ndarray]:
        transitions = []
        for x in self.preorder():
            if not self.is_tip(x):
                continue
            leaves = [c for c in self.children(x) if self._nodes[c].seq is not None]
            for i, c1 in enumerate(leaves):
                for c2 in leaves[i + 1 :]:
                    transitions.append(
                        self._count_pairs(self._nodes[c1].seq, self._nodes[c2].seq)
                    )
        return transitions

    def infer_states(self) -> dict[int, numpy.ndarray]:
        """the most likely state of every node at every column

        Columns without information at a node are given the gap index.
        """
        if not self.num_align_sites:
            return {x: numpy.zeros(0, dtype=numpy.uint8) for x in range(self.num_nodes)}
        cols = self._cols()
        prior = -numpy.log(self._model.motif_probs)[:, numpy.newaxis]
        states = {}
        for x in range(self.num_nodes):
            full = self._full_cost(x, cols)
            inferred = numpy.argmin(full + prior, axis=0).astype(numpy.uint8)
            uninformative = (full == 0).all(axis=0)
            inferred[uninformative] = GAP_INDEX
            states[x] = inferred
        return states

    def _transitions_goldman(self) -> list[numpy.ndarray]:
        states = self.infer_states()
        return [
            self._count_pairs(states[parent], states[child])
            for parent, child in self.edges()
        ]

    def train_model(self, method: str = "gojobori") -> None:
        """trains the attached model on this tree's data, then discards all
        cached costs"""
        transitions = self.get_model_transition_set(method)
        freqs = self.get_model_freq_est()
        if not transitions:
            warnings.warn(
                f"no transitions found with method {method!r}", UserWarning, stacklevel=2
            )
        self._model.train_params(transitions, freqs)
        self._cache.reset()

    def copy_sub_tree(self, u: int, v: int) -> LikelihoodTree:
        """a two node tree equivalent to this tree across the u-v edge

        The copies of u (id 0) and v (id 1) carry the conditional costs of
        their sides of the edge as fixed costs. The copy is rooted at v and
        has the same cost as this tree for every column.
        """
        self._check_edge(u, v)
        cols = self._cols()
        self._ensure_messages([(u, v), (v, u)], cols)
        nodes = []
        for new_id, (old_id, other) in enumerate(((u, v), (v, u))):
            old = self._nodes[old_id]
            node = TreeNode(new_id, name=old.name, anno=old.anno, anno_dist=old.anno_dist)
            node.base_cost = self._cache.get(old_id, other).copy()
            nodes.append(node)

        copy = self.__class__(model=self._model)
        copy._nodes = nodes
        copy._num_sites = self.num_align_sites
        copy._cache.resize(self.num_align_sites)
        copy._cache.init_leaf_cost(self._cache.leaf_cost)
        copy._connect(0, 1, self._lengths[u, v])
        copy._orient(1)
        return copy

    def save(self, path_or_file: PathType) -> None:
        """writes the complete state, model and cached costs included"""
        from phyloplace.format.binary_state import save_state

        save_state(self, path_or_file)

    @classmethod
    def load(cls, path_or_file: PathType) -> LikelihoodTree:
        from phyloplace.parse.binary_state import load_state

        return load_state(path_or_file, klass=cls)


def make_likelihood_tree(
    edges: Iterable[tuple[str, str, float]],
    msa: Mapping[str, str | numpy.ndarray] | None = None,
    model="JC69",
    root: int | str | None = None,
) -> LikelihoodTree:
    """builds a likelihood tree from (name1, name2, length) edges

    Parameters
    ----------
    edges
        the topology, see make_unrooted_tree
    msa
        name -> aligned sequence
    model
        model name or instance
    root
        root node id or name
    """
    tree = make_unrooted_tree(edges, root=root, klass=LikelihoodTree)
    tree.set_model(model)
    if msa is not None:
        tree.load_msa(msa)
    return tree
