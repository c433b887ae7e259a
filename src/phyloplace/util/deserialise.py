"""Rebuilding objects from their json rich dict form.

Serialisable classes write a dict whose "type" entry is their fully
qualified class name. A function that rebuilds such objects is registered
against a prefix of that name with register_deserialiser.
"""

import json
from importlib import import_module

from phyloplace.util.io import open_, path_exists

_deserialise_func_map = {}


class register_deserialiser:
    """decorator registering a function that rebuilds objects from a dict

    Parameters
    ----------
    args
        type strings, each must be unique. A dict is handled by the
        function whose type string is contained in its "type" entry,
        e.g. 'phyloplace.evolve.substitution_model' handles
        'phyloplace.evolve.substitution_model.GTR'.
    """

    def __init__(self, *args) -> None:
        for type_str in args:
            if not isinstance(type_str, str):
                msg = f"{type_str!r} is not a string"
                raise TypeError(msg)
            if type_str in _deserialise_func_map:
                msg = f"a deserialiser for {type_str!r} is already registered"
                raise ValueError(msg)
        self._type_strs = args

    def __call__(self, func):
        for type_str in self._type_strs:
            _deserialise_func_map[type_str] = func
        return func


def _get_deserialiser(type_: str):
    # phyloplace classes register on import of their module
    if type_.startswith("phyloplace.") and "." in type_:
        import_module(type_.rsplit(".", 1)[0])
    for type_str, func in _deserialise_func_map.items():
        if type_str in type_:
            return func
    msg = f"deserialising '{type_}' from json"
    raise NotImplementedError(msg)


def deserialise_object(data):
    """returns the object encoded in data

    Parameters
    ----------
    data
        a path to a json file, a json string or a dict

    Notes
    -----
    Data without a "type" entry is returned as loaded.
    """
    if isinstance(data, str) and not data.lstrip().startswith("{") and path_exists(data):
        with open_(data) as infile:
            data = json.load(infile)
    elif isinstance(data, str):
        data = json.loads(data)

    type_ = data.get("type") if isinstance(data, dict) else None
    if type_ is None:
        return data
    return _get_deserialiser(type_)(data)
