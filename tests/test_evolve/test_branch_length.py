import numpy
import pytest

from phyloplace.core.tree import TreeError
from phyloplace.evolve.branch_length import (
    MAX_BRANCH_LENGTH,
    make_branch_cost_func,
    optimize_branch_length,
)
from phyloplace.evolve.likelihood_tree import make_likelihood_tree

SEQ_A = "ACGTACGTACGTACGTACGT"
# differs from SEQ_A at 4 of 20 sites
SEQ_B = "CCGTAAGTACTTACGGACGT"


def _pair(seq_b, length=0.5, model="JC69"):
    return make_likelihood_tree([("a", "b", length)], {"a": SEQ_A, "b": seq_b}, model=model)


def test_two_leaf_ml_is_jc_distance():
    tree = _pair(SEQ_B)
    before = tree.tree_cost()
    got = optimize_branch_length(tree, 0, 1)
    expect = -0.75 * numpy.log(1 - 4 * 0.2 / 3)
    assert got == pytest.approx(expect, abs=1e-5)
    assert tree.get_branch_length(0, 1) == got
    assert tree.tree_cost() < before


def test_identical_sequences():
    tree = _pair(SEQ_A)
    got = optimize_branch_length(tree, 0, 1)
    assert got < 1e-4
    assert got >= 0


def test_zero_length_kept():
    tree = _pair(SEQ_A, length=0.0)
    before = tree.tree_cost()
    got = optimize_branch_length(tree, 0, 1)
    assert got == 0.0
    assert tree.get_branch_length(0, 1) == 0.0
    assert tree.tree_cost() == before


def test_branch_cost_func(lt):
    cols = lt._cols()
    func = make_branch_cost_func(lt, 3, 5, cols)
    assert func(0.1) == pytest.approx(lt.tree_cost(), rel=1e-12)
    assert numpy.isinf(func(-0.01))
    assert numpy.isinf(func(MAX_BRANCH_LENGTH + 1))
    assert numpy.isfinite(func(MAX_BRANCH_LENGTH))


def test_optimise_all_edges_never_worsens(lt):
    cost = lt.tree_cost()
    for u, v in lt.edges():
        length = optimize_branch_length(lt, u, v)
        assert lt.get_branch_length(u, v) == length
        assert 0 <= length <= MAX_BRANCH_LENGTH
        new_cost = lt.tree_cost()
        assert new_cost <= cost + 1e-10
        cost = new_cost


def test_optimised_tree_is_root_invariant(lt):
    for u, v in lt.edges():
        lt.optimize_branch_length(u, v)
    expect = lt.tree_cost()
    for node in range(lt.num_nodes):
        lt.set_root(node)
        lt.reset_cost()
        assert lt.tree_cost() == pytest.approx(expect, rel=1e-10)


def test_optimise_is_a_local_optimum(lt):
    length = optimize_branch_length(lt, 3, 5, tol=1e-8)
    func = make_branch_cost_func(lt, 3, 5, lt._cols())
    best = func(length)
    for delta in (-1e-3, 1e-3):
        if length + delta >= 0:
            assert func(length + delta) >= best - 1e-9


def test_optimise_region(lt):
    cost = lt.tree_cost(2, 5)
    optimize_branch_length(lt, 3, 4, start=2, end=5)
    assert lt.tree_cost(2, 5) <= cost + 1e-10


def test_optimise_invalid(lt):
    with pytest.raises(TreeError):
        optimize_branch_length(lt, 0, 3)
    with pytest.raises(ValueError):
        optimize_branch_length(lt, 3, 5, start=0, end=20)


def test_optimise_under_hky(lt):
    lt.set_model("HKY85")
    cost = lt.tree_cost()
    lt.optimize_branch_length(5, 7)
    assert lt.tree_cost() <= cost + 1e-10


def test_length_beyond_search_interval_is_optimised():
    tree = _pair(SEQ_B, length=15.0)
    before = tree.tree_cost()
    got = optimize_branch_length(tree, 0, 1)
    expect = -0.75 * numpy.log(1 - 4 * 0.2 / 3)
    assert got == pytest.approx(expect, abs=1e-5)
    assert tree.get_branch_length(0, 1) == got
    assert tree.tree_cost() < before


def test_saturated_long_branch_kept():
    # every site differs, the cost decreases with length
    tree = make_likelihood_tree(
        [("a", "b", 15.0)], {"a": "AAAAAAAA", "b": "CGTCGTCG"}, model="JC69"
    )
    before = tree.tree_cost()
    assert optimize_branch_length(tree, 0, 1) == 15.0
    assert tree.get_branch_length(0, 1) == 15.0
    assert tree.tree_cost() == before
