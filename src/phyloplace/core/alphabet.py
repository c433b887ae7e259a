"""Nucleotide alphabet encoding and the leaf cost lookup table.

States are ordered A, C, G, T (indices 0 to 3). Every other accepted
character, gaps, missing data and IUPAC ambiguity codes alike, is encoded as
the gap index and contributes no information to a likelihood calculation.
"""

from __future__ import annotations

from collections.abc import Iterable

import numpy

DNA_STATES = "ACGT"
NUM_STATES = len(DNA_STATES)
GAP_INDEX = NUM_STATES
GAP_CHAR = "-"

# indices of the purine (A<->G) and pyrimidine (C<->T) transition pairs
TRANSITION_PAIRS = ((0, 2), (1, 3))

_missing_chars = "-.?NRYKMSWBDHVX"


class AlphabetError(ValueError):
    """raised when a sequence contains characters outside the alphabet"""


def _make_char_table() -> numpy.ndarray:
    # 255 marks characters outside the alphabet
    table = numpy.full(256, 255, dtype=numpy.uint8)
    for index, char in enumerate(DNA_STATES):
        table[ord(char)] = table[ord(char.lower())] = index
    table[ord("U")] = table[ord("u")] = DNA_STATES.index("T")
    for char in _missing_chars:
        table[ord(char)] = table[ord(char.lower())] = GAP_INDEX
    return table


_char_to_index = _make_char_table()


def encode_seq(seq: str | bytes | Iterable[int]) -> numpy.ndarray:
    """returns a uint8 array of state indices for seq

    Parameters
    ----------
    seq
        a nucleotide string, bytes, or an already encoded array

    Raises
    ------
    AlphabetError
        if a character is not a nucleotide, gap or ambiguity code
    """
    if isinstance(seq, numpy.ndarray):
        if seq.size and (seq.min() < 0 or seq.max() > GAP_INDEX):
            msg = f"encoded values must lie in [0, {GAP_INDEX}]"
            raise AlphabetError(msg)
        return seq.astype(numpy.uint8)

    if isinstance(seq, str):
        try:
            seq = seq.encode("ascii")
        except UnicodeEncodeError as err:
            msg = f"non-ascii character in sequence: {err.object[err.start]!r}"
            raise AlphabetError(msg) from err

    if not isinstance(seq, bytes):
        items = list(seq)
        if items and isinstance(items[0], str):
            return encode_seq("".join(items))
        return encode_seq(numpy.array(items, dtype=int))

    raw = numpy.frombuffer(seq, dtype=numpy.uint8)
    encoded = _char_to_index[raw]
    invalid = encoded == 255
    if invalid.any():
        bad = sorted({chr(c) for c in raw[invalid]})
        msg = f"invalid characters {bad} in sequence"
        raise AlphabetError(msg)
    return encoded


def decode_seq(indices: Iterable[int]) -> str:
    """returns the nucleotide string for an array of state indices"""
    chars = DNA_STATES + GAP_CHAR
    return "".join(chars[i] for i in numpy.asarray(indices, dtype=int))


def make_leaf_cost(num_states: int = NUM_STATES) -> numpy.ndarray:
    """returns the (num_states, num_states + 1) leaf cost table

    Column b < num_states is the cost of each state given b was observed,
    zero for state b and infinity otherwise. The final column, for gaps, is
    zero for every state.
    """
    leaf_cost = numpy.full((num_states, num_states + 1), numpy.inf)
    leaf_cost[:, num_states] = 0.0
    leaf_cost[numpy.arange(num_states), numpy.arange(num_states)] = 0.0
    return leaf_cost


def is_gap(seq: numpy.ndarray) -> numpy.ndarray:
    """returns boolean array, True where seq has no nucleotide"""
    return numpy.asarray(seq) >= GAP_INDEX
