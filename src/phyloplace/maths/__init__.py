__all__ = [
    "matrix_exponentiation",
    "matrix_logarithm",
    "scipy_optimize",
]
