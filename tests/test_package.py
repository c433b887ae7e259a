import pytest

import phyloplace


def test_lazy_imports():
    from phyloplace.evolve.likelihood_tree import make_likelihood_tree
    from phyloplace.parse.binary_state import StateFormatError

    assert phyloplace.make_likelihood_tree is make_likelihood_tree
    assert phyloplace.StateFormatError is StateFormatError
    assert "place_seqs" in dir(phyloplace)
    assert set(phyloplace.__all__) <= set(dir(phyloplace))


def test_unknown_attribute():
    with pytest.raises(AttributeError):
        phyloplace.not_a_thing


def test_version():
    assert phyloplace.__version__ == phyloplace.version
    assert phyloplace.version_info[0] >= 2024


def test_top_level_workflow(edges, aln):
    tree = phyloplace.make_likelihood_tree(edges, aln, model="F81")
    tree.train_model()
    placements = phyloplace.place_seqs(
        tree, {"q": aln["c"]}, show_progress=False
    )
    assert isinstance(placements["q"][0], phyloplace.Placement)
    assert phyloplace.available_models()[0][0] == "JC69"
