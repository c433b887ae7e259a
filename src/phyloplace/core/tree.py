"""Unrooted phylogenetic trees with a movable root.

Nodes live in an arena addressed by stable integer ids. Every node keeps an
ordered list of neighbour ids; the current root only determines the parent
pointers, so re-rooting is a matter of reversing those pointers along the
path between the old and the new root.
"""

from __future__ import annotations

import os
import random
import re
import threading
import warnings
from collections.abc import Iterable, Mapping, Sequence
from typing import IO, TYPE_CHECKING

import numpy

from phyloplace.core.alphabet import GAP_INDEX, encode_seq
from phyloplace.util.io import atomic_write

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.util.io import PathType


class TreeError(Exception):
    pass


class StateFormatError(TreeError):
    """raised when a saved tree state is truncated or inconsistent"""


class TreeNode:
    """a node of an unrooted tree

    Parameters
    ----------
    id
        index of the node in the owning tree
    name
        label, assumed to be unique among named nodes
    seq
        encoded aligned sequence, None for unobserved nodes
    """

    __slots__ = (
        "anno",
        "anno_dist",
        "base_cost",
        "id",
        "name",
        "neighbours",
        "parent",
        "seq",
    )

    def __init__(
        self,
        id: int,
        name: str = "",
        seq: numpy.ndarray | None = None,
        anno: str = "",
        anno_dist: float = 0.0,
    ) -> None:
        self.id = id
        self.name = name or ""
        self.seq = seq
        self.neighbours: list[int] = []
        self.parent: int | None = None
        self.anno = anno
        self.anno_dist = anno_dist
        self.base_cost: numpy.ndarray | None = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, name={self.name!r})"

    def is_leaf(self) -> bool:
        return len(self.neighbours) == 1

    def is_internal(self) -> bool:
        return len(self.neighbours) > 1

    def is_root(self) -> bool:
        return self.parent is None

    def is_named(self) -> bool:
        return bool(self.name)


def _format_node_name(
    node: TreeNode,
    length: float | None,
    with_node_names: bool,
    escape_name: bool,
    with_distances: bool,
) -> str:
    """Helper function to format node name according to parameters"""
    if node.is_leaf() or with_node_names:
        node_name = node.name
    else:
        node_name = ""

    if (
        node_name
        and escape_name
        and not (node_name.startswith("'") and node_name.endswith("'"))
    ):
        if re.search("""[]['"(),:;_]""", node_name):
            node_name = "'{}'".format(node_name.replace("'", "''"))
        else:
            node_name = node_name.replace(" ", "_")

    if with_distances and length is not None:
        node_name = f"{node_name}:{length}"

    return node_name


class UnrootedTree:
    """an unrooted tree topology with branch lengths and leaf sequences

    The tree owns a re-entrant lock. Operations that restructure the tree
    (re-rooting, grafting, optimisation, saving) hold it for their duration.
    """

    def __init__(self, nodes: Sequence[TreeNode] = (), root: int = 0) -> None:
        self._nodes: list[TreeNode] = list(nodes)
        self._root = root
        self._num_sites = 0
        self._lengths: dict[tuple[int, int], float] = {}
        self.lock = threading.RLock()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(num_nodes={self.num_nodes}, "
            f"num_leaves={self.num_leaves}, root={self._root})"
        )

    def __str__(self) -> str:
        return self.get_newick()

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self):
        return iter(self._nodes)

    # construction helpers
    def _add_node(self, name: str = "", seq: numpy.ndarray | None = None) -> int:
        node = TreeNode(len(self._nodes), name=name, seq=seq)
        self._nodes.append(node)
        return node.id

    def _connect(self, u: int, v: int, length: float) -> None:
        if length < 0:
            msg = f"negative branch length {length} for edge ({u}, {v})"
            raise TreeError(msg)
        if v in self._nodes[u].neighbours:
            msg = f"duplicate edge ({u}, {v})"
            raise TreeError(msg)
        self._nodes[u].neighbours.append(v)
        self._nodes[v].neighbours.append(u)
        self._lengths[u, v] = self._lengths[v, u] = float(length)

    def _orient(self, root: int) -> None:
        """sets parent pointers of every node relative to root"""
        self._check_node(root)
        seen = {root}
        self._nodes[root].parent = None
        stack = [root]
        while stack:
            x = stack.pop()
            for y in self._nodes[x].neighbours:
                if y in seen:
                    continue
                seen.add(y)
                self._nodes[y].parent = x
                stack.append(y)
        if len(seen) != len(self._nodes):
            msg = "tree is disconnected"
            raise TreeError(msg)
        self._root = root

    def _check_node(self, node: int) -> None:
        if not 0 <= node < len(self._nodes):
            msg = f"no node with id {node}"
            raise TreeError(msg)

    def _check_edge(self, u: int, v: int) -> None:
        self._check_node(u)
        self._check_node(v)
        if (u, v) not in self._lengths:
            msg = f"nodes {u} and {v} are not adjacent"
            raise TreeError(msg)

    def split_edge(self, u: int, v: int, split_ratio: float = 0.5, name: str = "") -> int:
        """inserts a new node r on the u-v edge, returns r

        The u-r and r-v lengths are split_ratio and 1 - split_ratio of the
        original length. Neighbour order of u and v is preserved, r takes
        the position of the node it replaces.
        """
        self._check_edge(u, v)
        if not 0 <= split_ratio <= 1:
            msg = f"split_ratio {split_ratio} not in [0, 1]"
            raise ValueError(msg)

        length = self._lengths.pop((u, v))
        del self._lengths[v, u]
        r = self._add_node(name=name)
        node_u, node_v, node_r = self._nodes[u], self._nodes[v], self._nodes[r]
        node_u.neighbours[node_u.neighbours.index(v)] = r
        node_v.neighbours[node_v.neighbours.index(u)] = r
        node_r.neighbours = [u, v]
        self._lengths[u, r] = self._lengths[r, u] = split_ratio * length
        self._lengths[r, v] = self._lengths[v, r] = (1 - split_ratio) * length

        if node_v.parent == u:
            node_v.parent = r
            node_r.parent = u
        else:
            node_u.parent = r
            node_r.parent = v
        return r

    def add_leaf(
        self, attach: int, length: float, name: str = "", seq: numpy.ndarray | None = None
    ) -> int:
        """adds a new leaf as a child of attach, returns its id"""
        self._check_node(attach)
        n = self._add_node(name=name, seq=seq)
        self._connect(attach, n, length)
        self._nodes[n].parent = attach
        return n

    def load_msa(self, msa: Mapping[str, str | numpy.ndarray]) -> int:
        """assigns aligned sequences to the nodes with matching names

        Parameters
        ----------
        msa
            name -> aligned sequence, all of identical length

        Returns
        -------
        the number of nodes given a sequence

        Notes
        -----
        Leaves absent from msa are given an all-gap sequence.
        """
        encoded = {name: encode_seq(seq) for name, seq in msa.items()}
        lengths = {len(seq) for seq in encoded.values()}
        if len(lengths) > 1:
            msg = f"sequences have differing lengths {sorted(lengths)}"
            raise ValueError(msg)
        num_sites = lengths.pop() if lengths else 0

        assigned = 0
        missing = []
        for node in self._nodes:
            if node.name in encoded:
                node.seq = encoded[node.name]
                assigned += 1
            elif node.is_leaf():
                node.seq = numpy.full(num_sites, GAP_INDEX, dtype=numpy.uint8)
                missing.append(node.name)
            else:
                node.seq = None

        if missing:
            warnings.warn(
                f"{len(missing)} leaves have no sequence, treated as all gaps: "
                f"{missing[:5]}",
                UserWarning,
                stacklevel=2,
            )
        self._num_sites = num_sites
        return assigned

    # queries
    @property
    def root(self) -> int:
        return self._root

    @property
    def num_nodes(self) -> int:
        return len(self._nodes)

    @property
    def num_edges(self) -> int:
        return len(self._lengths) // 2

    @property
    def num_leaves(self) -> int:
        return sum(node.is_leaf() for node in self._nodes)

    @property
    def num_align_sites(self) -> int:
        return self._num_sites

    @property
    def nodes(self) -> list[TreeNode]:
        return self._nodes

    def get_node(self, node: int) -> TreeNode:
        self._check_node(node)
        return self._nodes[node]

    def get_node_matching_name(self, name: str) -> TreeNode:
        for node in self._nodes:
            if node.name == name:
                return node
        msg = f"No node named {name!r}"
        raise TreeError(msg)

    def neighbours(self, node: int) -> list[int]:
        return list(self.get_node(node).neighbours)

    def parent(self, node: int) -> int | None:
        return self.get_node(node).parent

    def children(self, node: int) -> list[int]:
        """neighbours of node other than its parent, in neighbour order"""
        node = self.get_node(node)
        return [n for n in node.neighbours if n != node.parent]

    def first_child(self, node: int) -> int | None:
        children = self.children(node)
        return children[0] if children else None

    def last_child(self, node: int) -> int | None:
        children = self.children(node)
        return children[-1] if children else None

    def is_leaf(self, node: int) -> bool:
        return self.get_node(node).is_leaf()

    def is_internal(self, node: int) -> bool:
        return self.get_node(node).is_internal()

    def is_tip(self, node: int) -> bool:
        """True if node is internal and all of its children are leaves"""
        if not self.is_internal(node):
            return False
        children = self.children(node)
        return bool(children) and all(self._nodes[c].is_leaf() for c in children)

    def is_parent(self, u: int, v: int) -> bool:
        """True if u is the parent of v"""
        return self.get_node(v).parent == u

    def is_child(self, u: int, v: int) -> bool:
        """True if u is a child of v"""
        return self.get_node(u).parent == v

    def preorder(self, node: int | None = None) -> list[int]:
        """node ids, parents before children, starting at node (default root)"""
        node = self._root if node is None else node
        self._check_node(node)
        order = []
        stack = [node]
        while stack:
            x = stack.pop()
            order.append(x)
            stack.extend(reversed(self.children(x)))
        return order

    def edges(self) -> list[tuple[int, int]]:
        """(parent, child) pairs in preorder"""
        return [
            (self._nodes[x].parent, x)
            for x in self.preorder()
            if self._nodes[x].parent is not None
        ]

    def is_adjacent(self, u: int, v: int) -> bool:
        return (u, v) in self._lengths

    def get_branch_length(self, u: int, v: int) -> float:
        self._check_edge(u, v)
        return self._lengths[u, v]

    def set_branch_length(self, u: int, v: int, length: float) -> None:
        self._check_edge(u, v)
        if length < 0 or numpy.isnan(length):
            msg = f"branch length must be non-negative, not {length}"
            raise ValueError(msg)
        self._lengths[u, v] = self._lengths[v, u] = float(length)

    def get_tip_names(self) -> list[str]:
        return [node.name for node in self._nodes if node.is_leaf()]

    def set_root(self, new_root: int) -> int:
        """makes new_root the root, returns the id of the previous root

        Only the parent pointers on the path between the two roots change.
        """
        with self.lock:
            self._check_node(new_root)
            old_root = self._root
            path = [new_root]
            while (parent := self._nodes[path[-1]].parent) is not None:
                path.append(parent)
            for child, parent in zip(path, path[1:]):
                self._nodes[parent].parent = child
            self._nodes[new_root].parent = None
            self._root = new_root
        return old_root

    def first_leaf(self, node: int | None = None) -> int:
        """the leaf reached by always descending to the first child"""
        node = self._root if node is None else node
        while not self.is_leaf(node):
            node = self.first_child(node)
        return node

    def last_leaf(self, node: int | None = None) -> int:
        """the leaf reached by always descending to the last child"""
        node = self._root if node is None else node
        while not self.is_leaf(node):
            node = self.last_child(node)
        return node

    def random_leaf(
        self,
        node: int,
        rng: random.Random | None = None,
        away_from: int | None = None,
    ) -> int:
        """a leaf chosen by a random walk from node

        Parameters
        ----------
        node
            where the walk starts
        rng
            source of randomness, a private random.Random is used if None
        away_from
            the walk never crosses the edge from node to this neighbour,
            defaults to the parent of node
        """
        rng = rng or random.Random()
        self._check_node(node)
        previous = self._nodes[node].parent if away_from is None else away_from
        if previous is not None and previous not in self._nodes[node].neighbours:
            msg = f"{away_from} is not a neighbour of {node}"
            raise TreeError(msg)

        current = node
        while options := [n for n in self._nodes[current].neighbours if n != previous]:
            previous, current = current, rng.choice(options)
        return current

    def get_newick(
        self,
        with_distances: bool = True,
        with_node_names: bool = False,
        semicolon: bool = True,
        escape_name: bool = True,
    ) -> str:
        """Return the newick string of the tree from the current root

        Parameters
        ----------
        with_distances
            include branch lengths
        with_node_names
            includes internal node names
        semicolon
            end tree string with a semicolon
        escape_name
            if any of these characters []'"() are within the
            nodes name, wrap the name in single quotes
        """
        stack = [(self._root, False)]
        node_results: dict[int, str] = {}

        while stack:
            x, visited = stack.pop()
            children = self.children(x)
            if not visited:
                stack.append((x, True))
                stack.extend((child, False) for child in reversed(children))
                continue

            node = self._nodes[x]
            length = None if node.parent is None else self._lengths[x, node.parent]
            node_name = _format_node_name(
                node,
                length,
                with_node_names=with_node_names,
                escape_name=escape_name,
                with_distances=with_distances,
            )
            if children:
                inner = ",".join(node_results.pop(c) for c in children)
                node_results[x] = f"({inner}){node_name}"
            else:
                node_results[x] = node_name

        result = node_results[self._root]
        return f"{result};" if semicolon else result

    def write_tree(
        self,
        out: PathType | IO[str],
        format_name: str = "newick",
        with_distances: bool = True,
        with_node_names: bool = False,
    ) -> bool:
        """writes the tree, returns whether anything was written

        Parameters
        ----------
        out
            path or an open text stream
        format_name
            only newick is supported, other values write nothing and warn
        """
        if format_name.lower() != "newick":
            warnings.warn(
                f"unsupported tree format {format_name!r}, nothing written",
                UserWarning,
                stacklevel=2,
            )
            return False

        data = self.get_newick(
            with_distances=with_distances, with_node_names=with_node_names
        )
        if isinstance(out, (str, os.PathLike)):
            with atomic_write(out, mode="wt") as outf:
                outf.write(data)
        else:
            out.write(data)
        return True


def _edges_to_tree(
    edges: Iterable[tuple[str, str, float]], klass: type[UnrootedTree]
) -> tuple[UnrootedTree, dict[str, int]]:
    tree = klass()
    name_to_id: dict[str, int] = {}
    for edge in edges:
        if len(edge) != 3:
            msg = f"edge {edge!r} is not a (name, name, length) triple"
            raise TreeError(msg)
        name1, name2, length = edge
        ids = []
        for name in (name1, name2):
            if name not in name_to_id:
                name_to_id[name] = tree._add_node(name=name)
            ids.append(name_to_id[name])
        u, v = ids
        if u == v:
            msg = f"self loop on {name1!r}"
            raise TreeError(msg)
        tree._connect(u, v, length)

    if not tree.num_nodes:
        msg = "no edges provided"
        raise TreeError(msg)
    if tree.num_edges != tree.num_nodes - 1:
        msg = (
            f"{tree.num_edges} edges cannot connect {tree.num_nodes} nodes "
            "without a cycle"
        )
        raise TreeError(msg)
    return tree, name_to_id


def make_unrooted_tree(
    edges: Iterable[tuple[str, str, float]],
    root: int | str | None = None,
    klass: type[UnrootedTree] = UnrootedTree,
) -> UnrootedTree:
    """builds a tree from (name1, name2, length) edges

    Parameters
    ----------
    edges
        undirected edges of an already parsed topology. Node ids are
        assigned in order of first appearance.
    root
        id or name of the root node, defaults to node 0
    klass
        the tree class to construct

    Raises
    ------
    TreeError
        for negative lengths, duplicate edges, cycles or disconnected input
    """
    tree, name_to_id = _edges_to_tree(edges, klass)
    if root is None:
        root = 0
    elif isinstance(root, str):
        if root not in name_to_id:
            msg = f"No node named {root!r}"
            raise TreeError(msg)
        root = name_to_id[root]
    tree._orient(root)
    return tree
