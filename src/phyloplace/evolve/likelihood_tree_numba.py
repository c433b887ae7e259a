import math

import numpy

from numba import njit

# turn off code coverage as njit-ted code not accessible to coverage


@njit(cache=True)
def dot_product_scaled_kernel(X, V, result):  # pragma: no cover
    rows = X.shape[0]
    num_states = X.shape[1]
    for col in range(V.shape[1]):
        scale = V[0, col]
        for state in range(1, num_states):
            if V[state, col] < scale:
                scale = V[state, col]
        if math.isinf(scale):
            scale = 0.0
        for row in range(rows):
            total = 0.0
            for state in range(num_states):
                total += X[row, state] * math.exp(scale - V[state, col])
            if total > 0.0:
                result[row, col] = scale - math.log(total)
            else:
                result[row, col] = math.inf
    return result


def dot_product_scaled(X, V):
    """returns -log(X . exp(-V)) computed without underflow

    Parameters
    ----------
    X
        (R, K) matrix of probabilities
    V
        (K, n) matrix of costs, each column a negative log-likelihood vector

    Notes
    -----
    Each column is shifted by its minimum before exponentiating, the shift
    is added back after the logarithm. Columns whose minimum is infinite are
    not shifted, a zero sum gives an infinite cost.
    """
    X = numpy.ascontiguousarray(X, dtype=numpy.float64)
    V = numpy.ascontiguousarray(V, dtype=numpy.float64)
    if X.ndim != 2 or V.ndim != 2 or X.shape[1] != V.shape[0]:
        msg = f"incompatible shapes {X.shape} and {V.shape}"
        raise ValueError(msg)
    result = numpy.empty((X.shape[0], V.shape[1]), dtype=numpy.float64)
    return dot_product_scaled_kernel(X, V, result)


def dot_scaled(weights, V):
    """returns -log(weights . exp(-V)) for each column of V"""
    weights = numpy.asarray(weights, dtype=numpy.float64).reshape(1, -1)
    return dot_product_scaled(weights, V)[0]
