"""Phylogenetic placement of aligned query sequences onto a tree.

A query is attached to a branch by splitting it with a new internal node
and hanging the query from that node as a new leaf. Candidate branches are
scored on two node copies of the tree, which have exactly the cost of the
full tree across that branch, so scoring a branch never modifies the tree.
"""

from __future__ import annotations

import random
import time
import warnings
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy
from scitrack import CachingLogger

from phyloplace.core.alphabet import GAP_INDEX, NUM_STATES, encode_seq
from phyloplace.evolve.branch_length import MAX_BRANCH_LENGTH, optimize_branch_length
from phyloplace.util.progress_display import display_wrap

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.evolve.likelihood_tree import LikelihoodTree
    from phyloplace.util.progress_display import ProgressContext

DEFAULT_PENDANT_LENGTH = 0.1


def place_seq(
    tree: LikelihoodTree,
    seq,
    u: int,
    v: int,
    d0: float,
    start: int = 0,
    end: int | None = None,
    name: str = "",
    split_ratio: float = 0.5,
) -> LikelihoodTree:
    """grafts seq onto the u-v branch and optimises its pendant length

    Parameters
    ----------
    tree
        modified in place
    seq
        sequence aligned to the tree's columns
    u, v
        adjacent nodes
    d0
        initial pendant branch length
    start, end
        inclusive column range used for optimising the pendant length
    name
        name of the new leaf
    split_ratio
        the u-r branch gets this fraction of the original u-v length, the
        r-v branch the remainder

    Returns
    -------
    the tree, now with an internal node r (id num_nodes) splitting u-v and a
    leaf n (id num_nodes + 1) attached to r, rooted at r
    """
    encoded = encode_seq(seq)
    if len(encoded) != tree.num_align_sites:
        msg = (
            f"sequence length {len(encoded)} does not match the "
            f"{tree.num_align_sites} aligned sites"
        )
        raise ValueError(msg)
    if not 0 <= d0 <= MAX_BRANCH_LENGTH:
        msg = f"initial pendant length {d0} not in [0, {MAX_BRANCH_LENGTH}]"
        raise ValueError(msg)

    with tree.lock:
        r = tree.split_edge(u, v, split_ratio=split_ratio)
        cache = tree.cost_cache
        # the subtree behind each of u and v is unchanged
        cache.move((u, v), (u, r))
        cache.move((v, u), (v, r))
        n = tree.add_leaf(r, d0, name=name, seq=encoded)
        tree.set_root(r)
        tree._invalidate_away(None, r)
        optimize_branch_length(tree, n, r, start=start, end=end)
    return tree


def seq_region(seq) -> tuple[int, int]:
    """inclusive indices of the first and last non-gap columns

    Raises
    ------
    ValueError
        if seq has no non-gap column
    """
    observed = numpy.flatnonzero(encode_seq(seq) < GAP_INDEX)
    if not observed.size:
        msg = "sequence contains only gaps"
        raise ValueError(msg)
    return int(observed[0]), int(observed[-1])


def estimate_pendant_length(
    tree: LikelihoodTree,
    seq,
    u: int,
    v: int,
    rng: random.Random | None = None,
    start: int = 0,
    end: int | None = None,
) -> float:
    """model distance from seq to a random leaf on v's side of the u-v branch

    Returns DEFAULT_PENDANT_LENGTH when the distance cannot be estimated,
    i.e. no shared observed columns or a saturated comparison.
    """
    encoded = encode_seq(seq)
    leaf = tree.get_node(tree.random_leaf(v, rng=rng, away_from=u))
    if leaf.seq is None:
        return DEFAULT_PENDANT_LENGTH

    end = tree.num_align_sites - 1 if end is None else end
    query, other = encoded[start : end + 1], leaf.seq[start : end + 1]
    observed = (query < GAP_INDEX) & (other < GAP_INDEX)
    D = numpy.zeros((NUM_STATES, NUM_STATES))
    numpy.add.at(D, (query[observed], other[observed]), 1)
    N = D.sum()
    dist = tree.model.sub_dist(D, N)
    if N == 0 or numpy.isnan(dist):
        return DEFAULT_PENDANT_LENGTH
    return float(min(dist, MAX_BRANCH_LENGTH))


@dataclass
class Placement:
    """the result of placing a query on one branch

    Attributes
    ----------
    query
        query name
    u, v
        ids of the branch end points
    names
        names of the branch end points
    pendant_length
        optimised length of the branch leading to the query
    cost
        cost of the tree with the query attached, over the query region
    lwr
        likelihood weight ratio among all branches tried for the query
    """

    query: str
    u: int
    v: int
    names: tuple[str, str] = ("", "")
    pendant_length: float = 0.0
    cost: float = numpy.inf
    lwr: float = 0.0

    def __str__(self) -> str:
        return (
            f"{self.query}\t{self.u}\t{self.v}\t{self.names[0]}\t{self.names[1]}"
            f"\t{self.pendant_length:.6g}\t{self.cost:.6f}\t{self.lwr:.6g}"
        )


def _likelihood_weight_ratios(costs: numpy.ndarray) -> numpy.ndarray:
    weights = numpy.exp(-(costs - costs.min()))
    return weights / weights.sum()


def _set_logger(logger) -> CachingLogger:
    if not isinstance(logger, CachingLogger):
        msg = f"logger must be of type CachingLogger not {type(logger)}"
        raise TypeError(msg)
    if not logger.log_file_path:
        msg = "the logger has no log_file_path"
        raise ValueError(msg)
    return logger


def place_on_edges(
    tree: LikelihoodTree,
    name: str,
    seq: numpy.ndarray,
    edges: Iterable[tuple[int, int]],
    rng: random.Random | None = None,
) -> list[Placement]:
    """places seq on copies of each edge, returns placements ordered by cost"""
    start, end = seq_region(seq)
    placements = []
    for u, v in edges:
        copy = tree.copy_sub_tree(u, v)
        d0 = estimate_pendant_length(tree, seq, u, v, rng=rng, start=start, end=end)
        place_seq(copy, seq, 0, 1, d0, start=start, end=end, name=name)
        # the copy's new internal node is 2, the query leaf is 3
        placements.append(
            Placement(
                query=name,
                u=u,
                v=v,
                names=(tree.get_node(u).name, tree.get_node(v).name),
                pendant_length=copy.get_branch_length(2, 3),
                cost=copy.tree_cost(start, end),
            )
        )

    if placements:
        lwrs = _likelihood_weight_ratios(numpy.array([p.cost for p in placements]))
        for placement, lwr in zip(placements, lwrs):
            placement.lwr = float(lwr)
    return sorted(placements, key=lambda p: p.cost)


@display_wrap
def place_seqs(
    tree: LikelihoodTree,
    queries: Mapping[str, str | numpy.ndarray],
    edges: Iterable[tuple[int, int]] | None = None,
    graft: bool = False,
    logger: CachingLogger | None = None,
    rng: random.Random | None = None,
    ui: ProgressContext | None = None,
) -> dict[str, list[Placement]]:
    """places each query on every candidate branch

    Parameters
    ----------
    tree
        tree with an alignment loaded, unchanged unless graft is True
    queries
        name -> sequence aligned to the tree's columns
    edges
        candidate (u, v) branches, every branch of the tree if None
    graft
        attach each query to the full tree at its best placement. Candidate
        branches split by an earlier graft are no longer tried.
    logger
        a scitrack CachingLogger with a log file path, records the
        placements
    rng
        random source for choosing the leaf used for initial pendant lengths
    show_progress
        show a progress bar

    Returns
    -------
    query name -> placements ordered by cost. Queries with no observed
    columns are skipped with a warning.
    """
    start_time = time.time()
    rng = rng or random.Random()
    edges = None if edges is None else list(edges)
    if logger is not None:
        logger = _set_logger(logger)
        logger.log_versions(["phyloplace"])
        logger.log_message(
            f"num_queries={len(queries)}, graft={graft}, "
            f"num_edges={tree.num_edges if edges is None else len(edges)}",
            label="arguments",
        )

    results = {}
    items = list(queries.items())
    for name, seq in ui.series(items, noun="query", count=len(items)):
        seq = encode_seq(seq)
        if not (seq < GAP_INDEX).any():
            warnings.warn(f"query {name!r} has no observed columns, skipped", stacklevel=2)
            continue

        with tree.lock:
            candidates = tree.edges() if edges is None else edges
            candidates = [(u, v) for u, v in candidates if tree.is_adjacent(u, v)]
            placements = place_on_edges(tree, name, seq, candidates, rng=rng)
            results[name] = placements
            if placements and graft:
                best = placements[0]
                start, end = seq_region(seq)
                place_seq(
                    tree,
                    seq,
                    best.u,
                    best.v,
                    best.pendant_length,
                    start=start,
                    end=end,
                    name=name,
                )

        if logger is not None and placements:
            logger.log_message(str(placements[0]), label="placement")

    if logger is not None:
        logger.log_message(f"{time.time() - start_time}", label="TIME TAKEN")
    return results
