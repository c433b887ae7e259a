"""phyloplace: likelihood evaluation, branch-length optimisation and
phylogenetic placement on unrooted trees under time-reversible nucleotide
substitution models."""

import logging
import os
import typing
import warnings
from importlib import import_module

from phyloplace._version import __version__

__copyright__ = "Copyright 2016-date, The phyloplace Project"
__license__ = "BSD-3"


def __getattr__(name: str) -> typing.Any:  # noqa: ANN401
    if (attr := globals().get(name)) is not None:
        return attr

    if name not in _import_mapping:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    module_name = _import_mapping[name]
    module = import_module(f".{module_name}", package=__name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


_import_mapping = {
    "encode_seq": "core.alphabet",
    "decode_seq": "core.alphabet",
    "make_unrooted_tree": "core.tree",
    "UnrootedTree": "core.tree",
    "TreeError": "core.tree",
    "available_models": "evolve.models",
    "get_model": "evolve.models",
    "LikelihoodTree": "evolve.likelihood_tree",
    "make_likelihood_tree": "evolve.likelihood_tree",
    "optimize_branch_length": "evolve.branch_length",
    "place_seq": "evolve.placement",
    "place_seqs": "evolve.placement",
    "Placement": "evolve.placement",
    "load_state": "parse.binary_state",
    "StateFormatError": "parse.binary_state",
    "save_state": "format.binary_state",
    "deserialise_object": "util.deserialise",
    "open_": "util.io",
}


def __dir__() -> list[str]:
    return list(_import_mapping.keys()) + list(globals().keys())


__all__ = list(_import_mapping.keys())

version = __version__
version_info = tuple(int(v) for v in version.split(".") if v.isdigit())


warn_env = "PHYLOPLACE_WARNINGS"

if warn := os.environ.get(warn_env):
    warnings.simplefilter(warn)


# suppress numba warnings
__numba_logger = logging.getLogger("numba")
__numba_logger.setLevel(logging.WARNING)
