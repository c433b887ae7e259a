"""Time-reversible nucleotide substitution models.

Every model provides the substitution probability matrix for a branch
length, a model corrected genetic distance between two aligned sequences
and training of its parameters from observed state transitions.

States are ordered A, C, G, T. Exchangeability parameters are ordered AC,
AG, AT, CG, CT, GT. A distance that cannot be corrected because the
observed differences saturate the model is returned as nan.
"""

from __future__ import annotations

import json
import warnings
from collections.abc import Sequence
from copy import deepcopy

import numpy

from phyloplace._version import __version__
from phyloplace.core.alphabet import NUM_STATES, TRANSITION_PAIRS
from phyloplace.maths.matrix_exponentiation import SemiSymmetricExponentiator
from phyloplace.maths.matrix_logarithm import logm
from phyloplace.util.deserialise import register_deserialiser
from phyloplace.util.misc import get_object_provenance

# upper triangle (i, j) pairs in exchangeability order
RATE_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
RATE_NAMES = ("AC", "AG", "AT", "CG", "CT", "GT")

_uniform = numpy.full(NUM_STATES, 1.0 / NUM_STATES)


def _check_motif_probs(motif_probs, strictly_positive: bool = False) -> numpy.ndarray:
    if motif_probs is None:
        return _uniform.copy()
    probs = numpy.array(motif_probs, dtype=float)
    if probs.shape != (NUM_STATES,):
        msg = f"motif_probs must have {NUM_STATES} values, not shape {probs.shape}"
        raise ValueError(msg)
    if not numpy.isfinite(probs).all() or (probs < 0).any():
        msg = f"motif_probs must be non-negative, got {probs}"
        raise ValueError(msg)
    if strictly_positive and (probs == 0).any():
        msg = f"motif_probs must be positive, got {probs}"
        raise ValueError(msg)
    if not numpy.isclose(probs.sum(), 1.0, atol=1e-6):
        msg = f"motif_probs must sum to 1, sum is {probs.sum()}"
        raise ValueError(msg)
    return probs / probs.sum()


def _check_positive(name: str, value: float) -> float:
    value = float(value)
    if not numpy.isfinite(value) or value <= 0:
        msg = f"{name} must be a positive number, not {value}"
        raise ValueError(msg)
    return value


def _check_length(length: float) -> float:
    length = float(length)
    if numpy.isnan(length) or length < 0:
        msg = f"branch length must be non-negative, not {length}"
        raise ValueError(msg)
    return length


def _heterozygosity(motif_probs: numpy.ndarray) -> float:
    # rounding can leave a small negative value for a point mass
    return max(float(1.0 - (motif_probs**2).sum()), 0.0)


def p_distance(D: numpy.ndarray, N: float) -> float:
    """proportion of compared sites that differ"""
    D = numpy.asarray(D, dtype=float)
    return (D.sum() - numpy.trace(D)) / N


def transition_fractions(D: numpy.ndarray, N: float) -> tuple[float, float]:
    """proportions of sites differing by a transition and by a transversion"""
    D = numpy.asarray(D, dtype=float)
    transitions = sum(D[i, j] + D[j, i] for i, j in TRANSITION_PAIRS)
    P = transitions / N
    return P, p_distance(D, N) - P


def rate_matrix(motif_probs: numpy.ndarray, rates: Sequence[float]) -> numpy.ndarray:
    """normalised Q with Q[i, j] = rate(i, j) * motif_probs[j]

    The expected number of substitutions per unit time at equilibrium is 1.
    """
    R = numpy.zeros((NUM_STATES, NUM_STATES))
    for (i, j), rate in zip(RATE_PAIRS, rates):
        R[i, j] = R[j, i] = rate
    Q = R * motif_probs[numpy.newaxis, :]
    Q[numpy.diag_indices(NUM_STATES)] = -Q.sum(axis=1)
    scale = -numpy.dot(motif_probs, numpy.diag(Q))
    if scale <= 0:
        msg = "rate matrix has no substitutions"
        raise ValueError(msg)
    return Q / scale


def general_distance(D: numpy.ndarray, N: float) -> float:
    """distance for a general time-reversible process

    With F = (D + D^T) / 2N and Pi the diagonal matrix of the row sums of
    F, d = -trace(Pi log(Pi^-1 F)). States never observed are excluded.
    """
    if N == 0:
        return 0
    D = numpy.asarray(D, dtype=float)
    F = (D + D.T) / (2 * N)
    freqs = F.sum(axis=1)
    observed = freqs > 0
    F = F[numpy.ix_(observed, observed)]
    freqs = freqs[observed]
    try:
        log_P = logm(F / freqs[:, numpy.newaxis])
    except (ArithmeticError, numpy.linalg.LinAlgError):
        return numpy.nan
    dist = -numpy.dot(freqs, numpy.diag(log_P))
    return float(max(dist, 0.0))


class _SubstitutionModel:
    """base class for the nucleotide substitution models

    Parameters
    ----------
    motif_probs
        the stationary distribution, uniform if None
    """

    name: str = ""
    _param_names: tuple[str, ...] = ()
    _fixed_motif_probs = False

    def __init__(self, motif_probs=None) -> None:
        self._motif_probs = _check_motif_probs(motif_probs)

    def __repr__(self) -> str:
        params = "".join(f", {k}={v!r}" for k, v in self.get_params().items())
        probs = [round(p, 4) for p in self._motif_probs.tolist()]
        return f"{self.__class__.__name__}(motif_probs={probs}{params})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, _SubstitutionModel):
            return NotImplemented
        return self.to_rich_dict() == other.to_rich_dict()

    @property
    def motif_probs(self) -> numpy.ndarray:
        return self._motif_probs.copy()

    @property
    def num_states(self) -> int:
        return NUM_STATES

    def get_params(self) -> dict:
        return {name: getattr(self, name) for name in self._param_names}

    def calc_psub(self, length: float) -> numpy.ndarray:
        """returns the substitution probability matrix P(length)

        Rows sum to 1, P(0) is the identity and every row tends to the
        stationary distribution as length increases.
        """
        length = _check_length(length)
        if numpy.isinf(length):
            return numpy.tile(self._motif_probs, (NUM_STATES, 1))
        return self._calc_psub(length)

    def _calc_psub(self, length: float) -> numpy.ndarray:
        raise NotImplementedError

    def sub_dist(self, D: numpy.ndarray, N: float) -> float:
        """returns the model corrected distance

        Parameters
        ----------
        D
            4x4 matrix of counts of state pairs at compared sites
        N
            number of compared sites

        Returns
        -------
        0 when N is 0, nan when the distance is undefined
        """
        raise NotImplementedError

    def train_params(
        self, transitions: Sequence[numpy.ndarray], freqs: numpy.ndarray
    ) -> None:
        """estimates parameters from transition counts and state counts

        Parameters that cannot be estimated keep their current value and a
        warning is issued.
        """

    def _train_motif_probs(self, freqs: numpy.ndarray) -> None:
        freqs = numpy.asarray(freqs, dtype=float)
        total = freqs.sum()
        if total <= 0 or (freqs < 0).any():
            warnings.warn(
                f"cannot estimate motif probs from {freqs.tolist()}, "
                "keeping existing values",
                UserWarning,
                stacklevel=3,
            )
            return
        self._motif_probs = _check_motif_probs(freqs / total)

    def clone(self):
        """returns an independent copy"""
        return deepcopy(self)

    def to_rich_dict(self) -> dict:
        data = {
            "type": get_object_provenance(self),
            "version": __version__,
            "name": self.name,
            "motif_probs": self._motif_probs.tolist(),
        }
        for name, value in self.get_params().items():
            data[name] = value.tolist() if isinstance(value, numpy.ndarray) else value
        return data

    def to_json(self) -> str:
        """returns result of json formatted string"""
        return json.dumps(self.to_rich_dict())

    @classmethod
    def from_rich_dict(cls, data: dict):
        data = dict(data)
        for key in ("type", "version", "name"):
            data.pop(key, None)
        if cls._fixed_motif_probs:
            data.pop("motif_probs", None)
        return cls(**data)


class F81(_SubstitutionModel):
    """Felsenstein's 1981 model, unequal base frequencies and a single rate"""

    name = "F81"

    def __init__(self, motif_probs=None) -> None:
        super().__init__(motif_probs)
        if _heterozygosity(self._motif_probs) <= 0:
            msg = f"motif_probs {self._motif_probs.tolist()} allow no substitutions"
            raise ValueError(msg)

    def _train_motif_probs(self, freqs: numpy.ndarray) -> None:
        freqs = numpy.asarray(freqs, dtype=float)
        if freqs.sum() > 0 and _heterozygosity(freqs / freqs.sum()) <= 0:
            warnings.warn(
                f"a single observed state in {freqs.tolist()}, keeping existing "
                "motif probs",
                UserWarning,
                stacklevel=3,
            )
            return
        super()._train_motif_probs(freqs)

    def _beta(self) -> float:
        return 1.0 / _heterozygosity(self._motif_probs)

    def _calc_psub(self, length: float) -> numpy.ndarray:
        decay = numpy.exp(-self._beta() * length)
        P = numpy.tile((1 - decay) * self._motif_probs, (NUM_STATES, 1))
        P[numpy.diag_indices(NUM_STATES)] += decay
        return P

    def sub_dist(self, D: numpy.ndarray, N: float) -> float:
        if N == 0:
            return 0
        B = _heterozygosity(self._motif_probs)
        arg = 1.0 - p_distance(D, N) / B
        if arg <= 0:
            return numpy.nan
        return float(-B * numpy.log(arg))

    def train_params(self, transitions, freqs) -> None:
        self._train_motif_probs(freqs)


class JC69(F81):
    """Jukes and Cantor's 1969 model, equal base frequencies and a single
    rate"""

    name = "JC69"
    _fixed_motif_probs = True

    def __init__(self) -> None:
        super().__init__(motif_probs=None)

    def _calc_psub(self, length: float) -> numpy.ndarray:
        decay = numpy.exp(-4 * length / 3)
        P = numpy.full((NUM_STATES, NUM_STATES), (1 - decay) / 4)
        P[numpy.diag_indices(NUM_STATES)] = (1 + 3 * decay) / 4
        return P

    def sub_dist(self, D: numpy.ndarray, N: float) -> float:
        if N == 0:
            return 0
        p = p_distance(D, N)
        if p >= 0.75:
            return numpy.nan
        return float(-3.0 / 4.0 * numpy.log(1.0 - 4.0 / 3.0 * p))

    def train_params(self, transitions, freqs) -> None:
        pass


class GTR(_SubstitutionModel):
    """General Time Reversible nucleotide substitution model

    Parameters
    ----------
    motif_probs
        stationary distribution, all values must be positive
    rates
        the six exchangeabilities AC, AG, AT, CG, CT, GT, default all 1
    """

    name = "GTR"
    _param_names = ("rates",)

    def __init__(self, motif_probs=None, rates=None) -> None:
        self._motif_probs = _check_motif_probs(motif_probs, strictly_positive=True)
        self.rates = self._check_rates(rates)
        self._exponentiator = None

    @staticmethod
    def _check_rates(rates) -> list[float]:
        if rates is None:
            return [1.0] * len(RATE_PAIRS)
        rates = numpy.array(rates, dtype=float)
        if rates.shape != (len(RATE_PAIRS),):
            msg = f"{len(RATE_PAIRS)} rates required, got shape {rates.shape}"
            raise ValueError(msg)
        if not numpy.isfinite(rates).all() or (rates < 0).any() or rates.sum() == 0:
            msg = f"rates must be non-negative and not all zero, got {rates}"
            raise ValueError(msg)
        return rates.tolist()

    def _get_rates(self) -> list[float]:
        return self.rates

    @property
    def Q(self) -> numpy.ndarray:
        return rate_matrix(self._motif_probs, self._get_rates())

    def _get_exponentiator(self):
        if self._exponentiator is None:
            self._exponentiator = SemiSymmetricExponentiator(self._motif_probs, self.Q)
        return self._exponentiator

    def _params_changed(self) -> None:
        self._exponentiator = None

    def _calc_psub(self, length: float) -> numpy.ndarray:
        P = self._get_exponentiator()(length)
        # remove rounding error from the eigen decomposition
        return P / P.sum(axis=1)[:, numpy.newaxis]

    def sub_dist(self, D: numpy.ndarray, N: float) -> float:
        return general_distance(D, N)

    def train_params(self, transitions, freqs) -> None:
        self._train_motif_probs(freqs)
        sums = numpy.zeros(len(RATE_PAIRS))
        weight = 0.0
        for D in transitions:
            D = numpy.asarray(D, dtype=float)
            N = D.sum()
            if N == 0:
                continue
            S = (D + D.T) / 2
            row_sums = S.sum(axis=1)
            if (row_sums == 0).any():
                continue
            pi = row_sums / row_sums.sum()
            try:
                Q = logm(S / row_sums[:, numpy.newaxis])
            except (ArithmeticError, numpy.linalg.LinAlgError):
                continue
            exch = [(Q[i, j] / pi[j] + Q[j, i] / pi[i]) / 2 for i, j in RATE_PAIRS]
            if not numpy.isfinite(exch).all():
                continue
            sums += N * numpy.array(exch)
            weight += N

        rates = numpy.maximum(sums / weight, 0.0) if weight else None
        if rates is None or rates.sum() <= 0:
            warnings.warn(
                "no transition matrix has a valid logarithm, keeping existing rates",
                UserWarning,
                stacklevel=2,
            )
        else:
            self.rates = (rates / rates.mean()).tolist()
        self._params_changed()

    def _train_motif_probs(self, freqs: numpy.ndarray) -> None:
        freqs = numpy.asarray(freqs, dtype=float)
        if (freqs <= 0).any():
            warnings.warn(
                f"unobserved states in {freqs.tolist()}, keeping existing motif probs",
                UserWarning,
                stacklevel=3,
            )
            return
        super()._train_motif_probs(freqs)


def _estimate_kappa(transitions: Sequence[numpy.ndarray]) -> float | None:
    """transition/transversion rate ratio from pooled symmetrised counts"""
    pooled = numpy.zeros((NUM_STATES, NUM_STATES))
    for D in transitions:
        pooled += numpy.asarray(D, dtype=float)
    N = pooled.sum()
    if N == 0:
        return None
    P, Q = transition_fractions(pooled, N)
    s_arg = 1 - 2 * P - Q
    v_arg = 1 - 2 * Q
    if s_arg <= 0 or v_arg <= 0 or v_arg == 1:
        return None
    kappa = 2 * numpy.log(s_arg) / numpy.log(v_arg) - 1
    return float(kappa) if numpy.isfinite(kappa) and kappa > 0 else None


class HKY85(GTR):
    """Hasegawa, Kishino and Yano 1985 model, unequal base frequencies and a
    transition/transversion rate ratio kappa"""

    name = "HKY85"
    _param_names = ("kappa",)

    def __init__(self, motif_probs=None, kappa=1.0) -> None:
        self._motif_probs = _check_motif_probs(motif_probs, strictly_positive=True)
        self.kappa = _check_positive("kappa", kappa)
        self._exponentiator = None

    def _get_rates(self) -> list[float]:
        rates = [1.0] * len(RATE_PAIRS)
        for index, pair in enumerate(RATE_PAIRS):
            if pair in TRANSITION_PAIRS:
                rates[index] = self.kappa
        return rates

    def train_params(self, transitions, freqs) -> None:
        self._train_motif_probs(freqs)
        self._train_kappa(transitions)
        self._params_changed()

    def _train_kappa(self, transitions) -> None:
        kappa = _estimate_kappa(transitions)
        if kappa is None:
            warnings.warn(
                "cannot estimate kappa from the transitions, keeping existing value",
                UserWarning,
                stacklevel=3,
            )
            return
        self.kappa = kappa


class K80(HKY85):
    """Kimura 1980, equal base frequencies and a transition/transversion
    rate ratio kappa"""

    name = "K80"
    _fixed_motif_probs = True

    def __init__(self, kappa=1.0) -> None:
        super().__init__(motif_probs=None, kappa=kappa)

    def sub_dist(self, D: numpy.ndarray, N: float) -> float:
        if N == 0:
            return 0
        P, Q = transition_fractions(D, N)
        s_arg = 1 - 2 * P - Q
        v_arg = 1 - 2 * Q
        if s_arg <= 0 or v_arg <= 0:
            return numpy.nan
        return float(-0.5 * numpy.log(s_arg) - 0.25 * numpy.log(v_arg))

    def train_params(self, transitions, freqs) -> None:
        self._train_kappa(transitions)
        self._params_changed()


@register_deserialiser("phyloplace.evolve.substitution_model")
def deserialise_substitution_model(data: dict) -> _SubstitutionModel:
    """returns a substitution model from its rich dict"""
    type_ = data["type"]
    klass = globals().get(type_[type_.rfind(".") + 1 :])
    if not (isinstance(klass, type) and issubclass(klass, _SubstitutionModel)):
        msg = f"{type_!r} is not a substitution model"
        raise ValueError(msg)
    return klass.from_rich_dict(data)
