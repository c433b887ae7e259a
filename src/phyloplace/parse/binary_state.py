"""Reader for the binary likelihood tree state format."""

from __future__ import annotations

import json
import os
from typing import IO, TYPE_CHECKING

import numpy

from phyloplace.core.tree import StateFormatError, TreeError, TreeNode
from phyloplace.format.binary_state import FLOAT, FORMAT_VERSION, INT, MAGIC, UINT
from phyloplace.util.deserialise import deserialise_object
from phyloplace.util.io import open_

if TYPE_CHECKING:  # pragma: no cover
    from phyloplace.evolve.likelihood_tree import LikelihoodTree
    from phyloplace.util.io import PathType

__all__ = ["StateFormatError", "load_state", "read_state"]


class _StateReader:
    """sequential reads from a buffer, short reads raise StateFormatError"""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    def read(self, num_bytes: int) -> bytes:
        if num_bytes < 0 or self._pos + num_bytes > len(self._data):
            msg = f"truncated state, {num_bytes} bytes requested at offset {self._pos}"
            raise StateFormatError(msg)
        chunk = self._data[self._pos : self._pos + num_bytes]
        self._pos += num_bytes
        return bytes(chunk)

    def read_int(self) -> int:
        return int(numpy.frombuffer(self.read(INT.itemsize), dtype=INT)[0])

    def read_count(self, label: str) -> int:
        value = self.read_int()
        if value < 0:
            msg = f"negative {label} {value}"
            raise StateFormatError(msg)
        return value

    def read_float(self) -> float:
        return float(numpy.frombuffer(self.read(FLOAT.itemsize), dtype=FLOAT)[0])

    def read_str(self) -> str:
        size = int(numpy.frombuffer(self.read(UINT.itemsize), dtype=UINT)[0])
        try:
            return self.read(size).decode("utf8")
        except UnicodeDecodeError as err:
            msg = "string is not valid utf8"
            raise StateFormatError(msg) from err

    def read_floats(self, shape: tuple[int, ...]) -> numpy.ndarray:
        size = int(numpy.prod(shape)) * FLOAT.itemsize
        return numpy.frombuffer(self.read(size), dtype=FLOAT).reshape(shape).copy()

    def at_end(self) -> bool:
        return self._pos == len(self._data)


def _read_node(reader: _StateReader, expected_id: int, num_states: int, num_sites: int):
    node_id = reader.read_int()
    if node_id != expected_id:
        msg = f"node record {expected_id} has id {node_id}"
        raise StateFormatError(msg)
    node = TreeNode(node_id, name=reader.read_str())
    seq_len = reader.read_int()
    if seq_len >= 0:
        if seq_len != num_sites:
            msg = f"sequence of node {node_id} has length {seq_len}, not {num_sites}"
            raise StateFormatError(msg)
        node.seq = numpy.frombuffer(reader.read(seq_len), dtype=numpy.uint8).copy()
        # the gap symbol is encoded as num_states
        if node.seq.size and node.seq.max() > num_states:
            msg = f"sequence of node {node_id} has a symbol above {num_states}"
            raise StateFormatError(msg)
    node.anno = reader.read_str()
    node.anno_dist = reader.read_float()
    flag = reader.read(1)
    if flag == b"\x01":
        node.base_cost = reader.read_floats((num_states, num_sites))
    elif flag != b"\x00":
        msg = f"invalid base cost flag {flag!r} for node {node_id}"
        raise StateFormatError(msg)
    return node


def _read_model(reader: _StateReader):
    from phyloplace.evolve.substitution_model import _SubstitutionModel

    text = reader.read_str()
    try:
        model = deserialise_object(json.loads(text))
    except (json.JSONDecodeError, NotImplementedError, ValueError, TypeError, KeyError) as err:
        msg = f"invalid model record: {err}"
        raise StateFormatError(msg) from err
    if not isinstance(model, _SubstitutionModel):
        msg = f"model record is not a substitution model: {text[:60]!r}"
        raise StateFormatError(msg)
    return model


def read_state(data: bytes, klass: type | None = None) -> LikelihoodTree:
    """returns the likelihood tree encoded in data

    Raises
    ------
    StateFormatError
        if data is truncated, has trailing bytes or is inconsistent
    """
    if klass is None:
        from phyloplace.evolve.likelihood_tree import LikelihoodTree as klass

    reader = _StateReader(data)
    if reader.read(len(MAGIC)) != MAGIC:
        msg = "not a phyloplace tree state"
        raise StateFormatError(msg)
    version = int(numpy.frombuffer(reader.read(UINT.itemsize), dtype=UINT)[0])
    if version != FORMAT_VERSION:
        msg = f"unsupported format version {version}"
        raise StateFormatError(msg)

    num_sites = reader.read_count("number of sites")
    num_nodes = reader.read_count("number of nodes")
    num_states = reader.read_count("number of states")
    nodes = [_read_node(reader, i, num_states, num_sites) for i in range(num_nodes)]

    lengths = {}
    for _ in range(reader.read_count("number of edges")):
        u, v, length = reader.read_int(), reader.read_int(), reader.read_float()
        valid_ids = 0 <= u < num_nodes and 0 <= v < num_nodes
        if not valid_ids or not 0 <= length < numpy.inf:
            msg = f"invalid edge ({u}, {v}, {length})"
            raise StateFormatError(msg)
        nodes[u].neighbours.append(v)
        lengths[u, v] = length
    for (u, v), length in lengths.items():
        if lengths.get((v, u)) != length:
            msg = f"edge ({u}, {v}) is not recorded in both directions"
            raise StateFormatError(msg)
    if num_nodes and len(lengths) != 2 * (num_nodes - 1):
        msg = f"{len(lengths)} directed edges cannot form a tree of {num_nodes} nodes"
        raise StateFormatError(msg)

    costs = {}
    for _ in range(reader.read_count("number of cost records")):
        u, v = reader.read_int(), reader.read_int()
        costs[u, v] = reader.read_floats((num_states, num_sites))

    rows = reader.read_count("leaf cost rows")
    cols = reader.read_count("leaf cost columns")
    if (rows, cols) != (num_states, num_states + 1):
        msg = f"leaf cost table of shape {(rows, cols)} for {num_states} states"
        raise StateFormatError(msg)
    leaf_cost = reader.read_floats((rows, cols))
    root = reader.read_int()
    model = _read_model(reader)
    if not reader.at_end():
        msg = "trailing data after tree state"
        raise StateFormatError(msg)
    if num_states != model.num_states:
        msg = f"{num_states} states recorded for a {model.num_states} state model"
        raise StateFormatError(msg)

    tree = klass(model=model)
    tree._nodes = nodes
    tree._lengths = lengths
    tree._num_sites = num_sites
    cache = tree.cost_cache
    try:
        cache.num_states = num_states
        cache.resize(num_sites)
        cache.init_leaf_cost(leaf_cost)
        for (u, v), matrix in costs.items():
            if (u, v) not in lengths:
                msg = f"cost record for ({u}, {v}) which is not an edge"
                raise StateFormatError(msg)
            cache.set(u, v, matrix)
        tree._orient(root)
    except StateFormatError:
        raise
    except (TreeError, ValueError) as err:
        msg = f"inconsistent tree state: {err}"
        raise StateFormatError(msg) from err
    return tree


def load_state(path_or_file: PathType | IO[bytes], klass: type | None = None):
    """loads a tree state saved by save_state

    Parameters
    ----------
    path_or_file
        a path, decompressed according to its suffix, or a binary stream
    klass
        the tree class to construct, LikelihoodTree by default

    Raises
    ------
    StateFormatError
        if the state cannot be read, the caller should abandon the load
    """
    if isinstance(path_or_file, (str, os.PathLike)):
        with open_(path_or_file, mode="rb") as infile:
            try:
                data = infile.read()
            except EOFError as err:
                msg = f"truncated compressed state in {path_or_file}"
                raise StateFormatError(msg) from err
    else:
        data = path_or_file.read()
    return read_state(data, klass=klass)
