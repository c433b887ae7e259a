"""Storage for the conditional costs of directed edges.

The entry for ``(source, direction)`` holds, for every state at ``source``
and every alignment column, the negative log-likelihood of the data in the
part of the tree on ``source``'s side of the edge, excluding everything
reached through ``direction``. Because an entry depends only on that part of
the tree, entries stay valid when the root moves.
"""

from __future__ import annotations

from collections.abc import Iterator

import numpy

from phyloplace.core.alphabet import NUM_STATES, make_leaf_cost

INVALID_COST = numpy.nan

EdgeKey = tuple[int, int]


def _as_cols(cols: int | slice | None) -> slice:
    if cols is None:
        return slice(None)
    if isinstance(cols, slice):
        return cols
    return slice(cols, cols + 1)


class CostCache:
    """directed-edge cost matrices, INVALID_COST marks uncomputed sites

    Parameters
    ----------
    num_sites
        number of alignment columns
    num_states
        number of model states
    """

    def __init__(self, num_sites: int = 0, num_states: int = NUM_STATES) -> None:
        self.num_sites = num_sites
        self.num_states = num_states
        self._costs: dict[EdgeKey, numpy.ndarray] = {}
        self.leaf_cost = make_leaf_cost(num_states)

    def __len__(self) -> int:
        return len(self._costs)

    def __contains__(self, key: EdgeKey) -> bool:
        return key in self._costs

    def __repr__(self) -> str:
        evaluated = sum(self.is_evaluated(*key) for key in self._costs)
        return (
            f"{self.__class__.__name__}(num_edges={len(self)}, "
            f"evaluated={evaluated}, num_sites={self.num_sites})"
        )

    def init_leaf_cost(self, leaf_cost: numpy.ndarray | None = None) -> None:
        """sets the state-by-symbol lookup table used for observed leaves"""
        if leaf_cost is None:
            leaf_cost = make_leaf_cost(self.num_states)
        leaf_cost = numpy.asarray(leaf_cost, dtype=float)
        if leaf_cost.shape[0] != self.num_states:
            msg = (
                f"leaf cost has {leaf_cost.shape[0]} rows, expected {self.num_states}"
            )
            raise ValueError(msg)
        self.leaf_cost = leaf_cost

    def reset_leaf_cost(self) -> None:
        self.leaf_cost = make_leaf_cost(self.num_states)

    def init_edge(self, u: int, v: int) -> numpy.ndarray:
        """returns the entry for (u, v), created invalid if absent"""
        key = u, v
        if key not in self._costs:
            self._costs[key] = numpy.full(
                (self.num_states, self.num_sites), INVALID_COST
            )
        return self._costs[key]

    def get(self, u: int, v: int) -> numpy.ndarray | None:
        return self._costs.get((u, v))

    def set(self, u: int, v: int, costs: numpy.ndarray) -> None:
        costs = numpy.asarray(costs, dtype=float)
        if costs.shape != (self.num_states, self.num_sites):
            msg = (
                f"cost matrix shape {costs.shape} does not match "
                f"{(self.num_states, self.num_sites)}"
            )
            raise ValueError(msg)
        self._costs[u, v] = costs

    def is_evaluated(self, u: int, v: int, cols: int | slice | None = None) -> bool:
        """whether every requested column of (u, v) holds a valid cost"""
        costs = self._costs.get((u, v))
        if costs is None:
            return False
        return not numpy.isnan(costs[:, _as_cols(cols)]).any()

    def reset(self, u: int | None = None, v: int | None = None) -> None:
        """marks the entry for (u, v) as invalid, or all entries if no edge"""
        if u is None and v is None:
            for costs in self._costs.values():
                costs.fill(INVALID_COST)
            return
        if (costs := self._costs.get((u, v))) is not None:
            costs.fill(INVALID_COST)

    def discard(self, u: int, v: int) -> None:
        self._costs.pop((u, v), None)

    def move(self, old: EdgeKey, new: EdgeKey) -> None:
        """re-keys the entry at old, any entry at new is replaced"""
        if old in self._costs:
            self._costs[new] = self._costs.pop(old)

    def resize(self, num_sites: int) -> None:
        """discards all entries and sets a new column count"""
        self.num_sites = num_sites
        self._costs.clear()

    def items(self) -> Iterator[tuple[EdgeKey, numpy.ndarray]]:
        return iter(self._costs.items())
