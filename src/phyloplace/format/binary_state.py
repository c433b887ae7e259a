"""Writer for the binary likelihood tree state format.

All values are little endian. In order the state holds the magic bytes and
format version, a header (sites, nodes, states), one record per node, the
directed edges in neighbour order with their lengths, the cached cost
matrices, the leaf cost table, the root id and the model as json.
"""

from __future__ import annotations

import io
import os
from typing import IO, TYPE_CHECKING

import numpy

from phyloplace.util.io import atomic_write

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.evolve.likelihood_tree import LikelihoodTree
    from phyloplace.util.io import PathType

MAGIC = b"PTUB"
FORMAT_VERSION = 1

INT = numpy.dtype("<i8")
UINT = numpy.dtype("<u4")
FLOAT = numpy.dtype("<f8")


def _int(value: int) -> bytes:
    return numpy.array(value, dtype=INT).tobytes()


def _float(value: float) -> bytes:
    return numpy.array(value, dtype=FLOAT).tobytes()


def _str(value: str) -> bytes:
    encoded = value.encode("utf8")
    return numpy.array(len(encoded), dtype=UINT).tobytes() + encoded


def _floats(values: numpy.ndarray) -> bytes:
    return numpy.ascontiguousarray(values, dtype=FLOAT).tobytes()


def _node_record(node, num_states: int, num_sites: int) -> bytes:
    parts = [_int(node.id), _str(node.name)]
    if node.seq is None:
        parts.append(_int(-1))
    else:
        parts.extend((_int(len(node.seq)), node.seq.astype(numpy.uint8).tobytes()))
    parts.extend((_str(node.anno), _float(node.anno_dist)))
    if node.base_cost is None:
        parts.append(b"\x00")
    else:
        if node.base_cost.shape != (num_states, num_sites):
            msg = f"base cost of node {node.id} has shape {node.base_cost.shape}"
            raise ValueError(msg)
        parts.extend((b"\x01", _floats(node.base_cost)))
    return b"".join(parts)


def write_state(tree: LikelihoodTree, out: IO[bytes]) -> None:
    """writes the tree state to a binary stream"""
    cache = tree.cost_cache
    num_states = cache.num_states
    num_sites = tree.num_align_sites
    out.write(MAGIC)
    out.write(numpy.array(FORMAT_VERSION, dtype=UINT).tobytes())
    out.write(_int(num_sites) + _int(tree.num_nodes) + _int(num_states))

    for node in tree.nodes:
        out.write(_node_record(node, num_states, num_sites))

    directed = [(x.id, y) for x in tree.nodes for y in x.neighbours]
    out.write(_int(len(directed)))
    for u, v in directed:
        out.write(_int(u) + _int(v) + _float(tree.get_branch_length(u, v)))

    costs = list(cache.items())
    out.write(_int(len(costs)))
    for (u, v), matrix in costs:
        out.write(_int(u) + _int(v) + _floats(matrix))

    rows, cols = cache.leaf_cost.shape
    out.write(_int(rows) + _int(cols) + _floats(cache.leaf_cost))
    out.write(_int(tree.root))
    out.write(_str(tree.model.to_json()))


def save_state(tree: LikelihoodTree, path_or_file: PathType | IO[bytes]) -> None:
    """saves the tree state

    Parameters
    ----------
    tree
        the tree, locked for the duration of the save
    path_or_file
        a path, compressed by gzip, bz2 or xz according to its suffix, or a
        binary stream
    """
    with tree.lock:
        buffer = io.BytesIO()
        write_state(tree, buffer)
    data = buffer.getvalue()

    if isinstance(path_or_file, (str, os.PathLike)):
        with atomic_write(path_or_file, mode="wb") as out:
            out.write(data)
    else:
        path_or_file.write(data)
