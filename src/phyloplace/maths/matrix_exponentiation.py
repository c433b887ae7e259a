"""Transition probability matrices P(t) = exp(Qt) for reversible rate
matrices.

The decomposition is computed once per rate matrix. Each call with a new
time is then a scaling of the eigenvalues and one matrix product.
"""

import numpy

from numpy.linalg import eigh


class EigenExponentiator:
    """callable returning exp(Q*t) from a precomputed eigen decomposition

    Q = left @ diag(roots) @ right
    """

    __slots__ = ["Q", "roots", "left", "right"]

    def __init__(self, Q, roots, left, right):
        self.Q = Q
        self.roots = roots
        self.left = left
        self.right = right

    def __call__(self, t):
        P = numpy.dot(self.left * numpy.exp(self.roots * t), self.right)
        # round off can leave tiny negative entries
        return numpy.clip(P, 0.0, None)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.Q!r})"


def SemiSymmetricExponentiator(motif_probs, Q):
    """returns an EigenExponentiator for a time-reversible Q

    Reversibility makes diag(h) Q diag(1/h), with h the square roots of the
    motif probabilities, a symmetric matrix so the symmetric eigen solver
    applies. All motif probabilities must be positive.
    """
    motif_probs = numpy.asarray(motif_probs, dtype=float)
    if (motif_probs <= 0).any():
        msg = "all motif probabilities must be positive"
        raise ValueError(msg)

    Q = numpy.asarray(Q, dtype=float)
    h = numpy.sqrt(motif_probs)
    S = Q * numpy.divide.outer(h, h)
    roots, U = eigh((S + S.T) / 2)
    return EigenExponentiator(Q, roots, U / h[:, numpy.newaxis], U.T * h)
