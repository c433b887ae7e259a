import json

import pytest

from phyloplace.evolve.substitution_model import HKY85
from phyloplace.util.deserialise import deserialise_object, register_deserialiser


def test_no_type_returned_as_is():
    data = {"a": 1, "b": [1, 2]}
    assert deserialise_object(data) == data
    assert deserialise_object(json.dumps(data)) == data


def test_deserialise_from_path(tmp_path):
    model = HKY85(kappa=2.5)
    path = tmp_path / "model.json"
    path.write_text(model.to_json())
    got = deserialise_object(str(path))
    assert isinstance(got, HKY85)
    assert got.kappa == 2.5


def test_deserialise_from_dict():
    got = deserialise_object(HKY85(kappa=4.0).to_rich_dict())
    assert isinstance(got, HKY85)
    assert got.kappa == 4.0


def test_unknown_type():
    with pytest.raises(NotImplementedError):
        deserialise_object({"type": "somewhere.else.Thing"})


def test_register_deserialiser_requires_str():
    with pytest.raises(TypeError):
        register_deserialiser(1)


def test_register_deserialiser():
    @register_deserialiser("tests.test_util.Widget")
    def make_widget(data):
        return ("widget", data["size"])

    assert deserialise_object({"type": "tests.test_util.Widget", "size": 3}) == (
        "widget",
        3,
    )
