import numpy
import pytest
from numpy.testing import assert_allclose, assert_equal

from phyloplace.core.alphabet import encode_seq
from phyloplace.core.tree import TreeError
from phyloplace.evolve.likelihood_tree import LikelihoodTree, make_likelihood_tree
from phyloplace.evolve.models import get_model, models
from phyloplace.evolve.substitution_model import HKY85, JC69

PI = numpy.array([0.1, 0.2, 0.3, 0.4])


def _all_directed(tree):
    return [(node.id, other) for node in tree.nodes for other in node.neighbours]


def _evaluate_everything(tree):
    for u, v in _all_directed(tree):
        tree.get_branch_cost(u, v)


def test_two_leaf_closed_form():
    tree = make_likelihood_tree([("a", "b", 0.2)], {"a": "AC", "b": "AG"})
    decay = numpy.exp(-4 * 0.2 / 3)
    same, diff = (1 + 3 * decay) / 4, (1 - decay) / 4
    expect = numpy.array([-numpy.log(same / 4), -numpy.log(diff / 4)])
    assert_allclose(tree.site_costs(), expect)
    assert tree.tree_cost() == pytest.approx(expect.sum())
    assert tree.site_cost(1) == pytest.approx(expect[1])


def test_two_leaf_unequal_frequencies():
    model = get_model("F81", motif_probs=PI)
    tree = make_likelihood_tree([("a", "b", 0.5)], {"a": "AT", "b": "GT"}, model=model)
    P = model.calc_psub(0.5)
    expect = -numpy.log([PI[0] * P[0, 2], PI[3] * P[3, 3]])
    assert_allclose(tree.site_costs(), expect)


def test_star_tree_brute_force():
    lengths = (0.1, 0.2, 0.3)
    edges = [(name, "x", length) for name, length in zip("abc", lengths)]
    aln = {"a": "ACGTA", "b": "ACCTA", "c": "TC-TG"}
    model = HKY85(motif_probs=PI, kappa=4.0)
    tree = make_likelihood_tree(edges, aln, model=model)
    seqs = [encode_seq(aln[name]) for name in "abc"]
    psubs = [model.calc_psub(length) for length in lengths]
    expect = []
    for j in range(5):
        total = 0.0
        for state in range(4):
            term = PI[state]
            for seq, P in zip(seqs, psubs):
                if seq[j] < 4:
                    term *= P[state, seq[j]]
            total += term
        expect.append(-numpy.log(total))
    assert_allclose(tree.site_costs(), expect, rtol=1e-10)


@pytest.mark.parametrize("name", models)
def test_root_invariance(lt, name):
    kwargs = {} if name in ("JC69", "K80") else {"motif_probs": PI}
    lt.set_model(get_model(name, **kwargs))
    expect = lt.tree_cost()
    expect_sites = lt.site_costs()
    assert numpy.isfinite(expect)
    for node in range(lt.num_nodes):
        lt.set_root(node)
        assert lt.tree_cost() == pytest.approx(expect, rel=1e-10)
        lt.reset_cost()
        assert_allclose(lt.site_costs(), expect_sites, rtol=1e-10)


def test_site_costs(lt):
    sites = lt.site_costs()
    assert sites.shape == (12,)
    assert (sites > 0).all()
    assert lt.tree_cost() == pytest.approx(sites.sum())
    assert lt.tree_cost(2, 5) == pytest.approx(sites[2:6].sum())
    assert lt.site_cost(7) == pytest.approx(sites[7])
    # region evaluation matches after a reset
    lt.reset_cost()
    assert lt.tree_cost(2, 5) == pytest.approx(sites[2:6].sum())


@pytest.mark.parametrize("start,end", [(0, 12), (-1, 3), (5, 4)])
def test_site_costs_invalid_range(lt, start, end):
    with pytest.raises(ValueError):
        lt.site_costs(start, end)


def test_no_alignment():
    tree = make_likelihood_tree([("a", "b", 0.2), ("b", "c", 0.1)])
    assert tree.site_costs().shape == (0,)
    assert tree.tree_cost() == 0.0


def test_cost(lt):
    full = lt.cost()
    assert full.shape == (4, 12)
    assert lt.cost(j=3).shape == (4,)
    assert_allclose(lt.cost(j=3), full[:, 3])
    # a non-root node gives the cost of its subtree
    sub = lt.cost(5)
    assert_allclose(sub, lt.cost_cache.get(5, 3))


def test_evaluate_single_column(lt):
    lt.evaluate(j=3)
    assert lt.is_evaluated(1, 0, 3)
    assert not lt.is_evaluated(1, 0)
    lt.evaluate()
    assert lt.is_evaluated(1, 0)
    assert lt.is_evaluated(5, 3)
    # nothing is computed towards the leaves
    assert not lt.is_evaluated(3, 5)


def test_get_branch_cost(lt):
    got = lt.get_branch_cost(3, 5)
    assert got.shape == (4, 12)
    assert lt.is_evaluated(3, 5)
    got[:] = 0
    assert not numpy.allclose(lt.cost_cache.get(3, 5), 0)
    with pytest.raises(TreeError):
        lt.get_branch_cost(0, 3)


def test_leaf_messages(lt):
    # a leaf sends its leaf cost
    got = lt.get_branch_cost(4, 3)
    seq = encode_seq("ACGATGCTACGA")
    assert_equal(got, lt.cost_cache.leaf_cost[:, seq])


def test_set_branch_length_invalidates(lt):
    _evaluate_everything(lt)
    lt.set_branch_length(3, 5, 0.4)
    for key in [(5, 6), (5, 7), (3, 1), (3, 4), (1, 0), (1, 2)]:
        assert not lt.is_evaluated(*key), key
    for key in [(5, 3), (3, 5), (6, 5), (7, 5), (4, 3), (1, 3), (0, 1), (2, 1)]:
        assert lt.is_evaluated(*key), key


def test_set_branch_length_cost(lt, edges, aln):
    before = lt.tree_cost()
    lt.set_branch_length(3, 5, 0.4)
    after = lt.tree_cost()
    assert after != pytest.approx(before)
    edges = [e if e[:2] != ("y", "z") else ("y", "z", 0.4) for e in edges]
    fresh = make_likelihood_tree(edges, aln)
    assert fresh.tree_cost() == pytest.approx(after, rel=1e-12)
    for node in range(8):
        lt.set_root(node)
        assert lt.tree_cost() == pytest.approx(after, rel=1e-10)


def test_set_root_keeps_cache(lt):
    _evaluate_everything(lt)
    lt.set_root(6)
    assert all(lt.is_evaluated(u, v) for u, v in _all_directed(lt))


def test_set_model(lt):
    lt.evaluate()
    model = HKY85(kappa=3.0)
    lt.set_model(model)
    assert not lt.is_evaluated(1, 0)
    assert lt.model == model
    assert lt.model is not model
    with pytest.raises(ValueError):
        lt.set_model("XYZ")


def test_load_msa_clears_cache(lt, aln):
    lt.evaluate()
    assert len(lt.cost_cache)
    lt.load_msa({name: seq[:6] for name, seq in aln.items()})
    assert len(lt.cost_cache) == 0
    assert lt.num_align_sites == 6
    assert lt.site_costs().shape == (6,)


def test_get_model_freq_est(lt):
    assert_allclose(lt.get_model_freq_est(), numpy.array([17, 15, 14, 12]) / 58)


def test_model_freq_est_no_data(edges):
    tree = make_likelihood_tree(edges)
    assert_allclose(tree.get_model_freq_est(), numpy.full(4, 0.25))


def test_transition_set_gojobori(lt):
    got = lt.get_model_transition_set("GoJoBoRi")
    assert len(got) == 1
    D = got[0]
    assert D.sum() == 10
    assert D[3, 0] == 1
    assert numpy.trace(D) == 9


def test_transition_set_goldman(lt):
    got = lt.get_model_transition_set("goldman")
    assert len(got) == lt.num_edges
    for D in got:
        assert D.shape == (4, 4)
        assert 0 < D.sum() <= 12


def test_transition_set_unknown(lt):
    with pytest.raises(ValueError):
        lt.get_model_transition_set("felsenstein")


def test_infer_states(lt, aln):
    states = lt.infer_states()
    assert set(states) == set(range(8))
    assert_equal(states[0], encode_seq(aln["a"]))
    assert_equal(states[4], encode_seq(aln["c"]))
    # only gaps at the observed columns are replaced
    assert_equal(states[6][:10], encode_seq(aln["d"])[:10])
    assert (states[1] < 4).all()


def test_train_model(lt, aln):
    # add transitions on the b and e branches
    aln["b"] = "GCATTGCAACGA"
    aln["e"] = "TTAAAGCTNCGA"
    lt.load_msa(aln)
    lt.set_model(HKY85(kappa=1.0))
    lt.evaluate()
    lt.train_model("goldman")
    assert not lt.is_evaluated(1, 0)
    assert lt.model.kappa > 0
    assert lt.model.kappa != 1.0
    assert_allclose(lt.model.motif_probs, lt.get_model_freq_est())
    assert numpy.isfinite(lt.tree_cost())


def test_train_model_without_transitions():
    tree = make_likelihood_tree([("a", "b", 0.2)], {"a": "ACGT", "b": "ACGA"})
    with pytest.warns(UserWarning):
        tree.train_model("gojobori")
    assert tree.model == JC69()


@pytest.mark.parametrize(
    "u,v", [(0, 1), (1, 0), (1, 3), (3, 1), (3, 5), (5, 3), (5, 7), (4, 3)]
)
def test_copy_sub_tree(lt, u, v):
    expect = lt.site_costs()
    copy = lt.copy_sub_tree(u, v)
    assert isinstance(copy, LikelihoodTree)
    assert copy.num_nodes == 2
    assert copy.root == 1
    assert copy.get_node(0).name == lt.get_node(u).name
    assert copy.get_node(1).name == lt.get_node(v).name
    assert copy.get_branch_length(0, 1) == lt.get_branch_length(u, v)
    assert copy.get_node(0).base_cost.shape == (4, 12)
    assert_allclose(copy.site_costs(), expect, rtol=1e-10)
    copy.set_root(0)
    assert_allclose(copy.site_costs(), expect, rtol=1e-10)


def test_copy_sub_tree_is_independent(lt):
    copy = lt.copy_sub_tree(3, 5)
    copy.set_branch_length(0, 1, 1.0)
    assert lt.get_branch_length(3, 5) == 0.1
    assert copy.model == lt.model
    assert copy.model is not lt.model


def test_deep_tree():
    num = 1500
    rng = numpy.random.default_rng(7)
    edges = [(f"i{i}", f"i{i + 1}", 0.05) for i in range(num)]
    edges += [(f"i{i}", f"l{i}", 0.1) for i in range(1, num)]
    names = [f"l{i}" for i in range(1, num)] + ["i0", f"i{num}"]
    aln = {name: "".join(rng.choice(list("ACGT"), size=8)) for name in names}
    tree = make_likelihood_tree(edges, aln)
    expect = tree.tree_cost()
    assert numpy.isfinite(expect)
    tree.set_root(tree.get_node_matching_name(f"i{num}").id)
    tree.reset_cost()
    assert tree.tree_cost() == pytest.approx(expect, rel=1e-9)


def test_repr(lt):
    assert "num_nodes=8" in repr(lt)
    assert "num_edges=0" in repr(lt.cost_cache)
