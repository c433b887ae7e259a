__all__ = [
    "branch_length",
    "cost_cache",
    "likelihood_tree",
    "likelihood_tree_numba",
    "models",
    "placement",
    "substitution_model",
]
