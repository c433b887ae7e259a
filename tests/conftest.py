import gc

import pytest

from phyloplace.evolve.likelihood_tree import make_likelihood_tree

# ids by first appearance: a=0, x=1, b=2, y=3, c=4, z=5, d=6, e=7
EDGES = [
    ("a", "x", 0.1),
    ("b", "x", 0.15),
    ("x", "y", 0.05),
    ("c", "y", 0.2),
    ("y", "z", 0.1),
    ("d", "z", 0.12),
    ("e", "z", 0.3),
]

ALIGNMENT = {
    "a": "ACGTTGCAACGT",
    "b": "ACGTTGCAACGA",
    "c": "ACGATGCTACGA",
    "d": "TCGATGCTAC-A",
    "e": "TCGAAGCTNCGA",
}


@pytest.fixture
def edges():
    return list(EDGES)


@pytest.fixture
def aln():
    return dict(ALIGNMENT)


@pytest.fixture
def lt(edges, aln):
    """five leaf likelihood tree under JC69, rooted at leaf a"""
    return make_likelihood_tree(edges, aln, model="JC69")


@pytest.fixture(scope="session", autouse=True)
def _try_cleaning_up_on_autouse_fixture_teardown():
    yield
    for _ in range(10):
        gc.collect()
