"""Principal logarithm of a diagonalisable matrix with positive real
eigenvalues, as needed for recovering rate matrices from transition
probability estimates.
"""

import numpy

from numpy.linalg import eig, inv


def logm(P):
    """returns the principal logarithm of P

    Raises
    ------
    ArithmeticError
        if an eigenvalue is complex or not positive, as the principal
        logarithm is then not a real matrix, or if P is too close to
        defective for the decomposition to reproduce it
    """
    P = numpy.asarray(P, dtype=float)
    vals, vecs = eig(P)
    if not numpy.allclose(vals.imag, 0.0):
        raise ArithmeticError("complex eigenvalues")

    vals, vecs = vals.real, vecs.real
    if (vals <= 0).any():
        raise ArithmeticError("non-positive eigenvalues")

    vecs_inv = inv(vecs)
    if not numpy.allclose(numpy.dot(vecs * vals, vecs_inv), P):
        raise ArithmeticError("eigendecomposition failed")

    return numpy.dot(vecs * numpy.log(vals), vecs_inv)
