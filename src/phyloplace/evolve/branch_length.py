"""Maximum likelihood estimation of a single branch length.

Only the messages on either side of the branch are needed: with every
other branch held fixed, the cost of the tree as a function of the branch
length l is sum_j dot_scaled(pi, C_u[:, j] + dot_scaled(P(l), C_v[:, j])).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy

from phyloplace.evolve.likelihood_tree_numba import dot_product_scaled, dot_scaled
from phyloplace.maths.scipy_optimize import brent

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.evolve.likelihood_tree import LikelihoodTree

BRANCH_EPS = 1e-6
MAX_ITER = 100
MAX_BRANCH_LENGTH = 10.0

# initial bracket width when the current length is zero
_MIN_BRACKET = 0.01


def make_branch_cost_func(
    tree: LikelihoodTree,
    u: int,
    v: int,
    cols: slice,
    max_length: float = MAX_BRANCH_LENGTH,
):
    """returns f(length), the cost over cols as a function of the u-v length

    Lengths outside [0, max_length] have infinite cost.
    """
    tree._ensure_messages([(u, v), (v, u)], cols)
    cost_u = tree.cost_cache.get(u, v)[:, cols].copy()
    cost_v = tree.cost_cache.get(v, u)[:, cols].copy()
    model = tree.model
    motif_probs = model.motif_probs

    def branch_cost(length: float) -> float:
        if not 0 <= length <= max_length:
            return numpy.inf
        psub = model.calc_psub(length)
        return float(
            dot_scaled(motif_probs, cost_u + dot_product_scaled(psub, cost_v)).sum()
        )

    return branch_cost


def optimize_branch_length(
    tree: LikelihoodTree,
    u: int,
    v: int,
    start: int = 0,
    end: int | None = None,
    tol: float = BRANCH_EPS,
    max_iter: int = MAX_ITER,
) -> float:
    """optimises the u-v length over the inclusive column range [start, end]

    Parameters
    ----------
    tree
        the tree, modified in place
    u, v
        adjacent nodes
    start, end
        column range, the whole alignment by default
    tol
        absolute tolerance on the length
    max_iter
        iteration budget for the line search

    Returns
    -------
    the new length, or the initial length when no strict improvement was
    found, in which case the tree is unchanged
    """
    with tree.lock:
        initial = tree.get_branch_length(u, v)
        cols = tree._cols(start, end)
        branch_cost = make_branch_cost_func(tree, u, v, cols)
        # the current length may lie beyond the search interval
        initial_cost = make_branch_cost_func(tree, u, v, cols, max_length=numpy.inf)(
            initial
        )
        x0 = min(initial, MAX_BRANCH_LENGTH / 2)
        result = brent(
            branch_cost,
            brack=(x0, x0 + max(x0, _MIN_BRACKET)),
            tol=tol,
            maxiter=max_iter,
        )
        if not result.fval < initial_cost:
            return initial

        length = float(result.xmin)
        tree.set_branch_length(u, v, length)
        tree.evaluate()
    return length
