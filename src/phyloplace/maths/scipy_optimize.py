# One dimensional minimisation, derived from the scipy optimize module and
# customised for branch-length searches: cope with infinity (objective
# values outside the feasible interval are +inf), tol specified as an
# absolute value, not a proportion of x, and an iteration budget that is
# reported back to the caller.

# ******NOTICE***************
# optimize.py module by Travis E. Oliphant
#
# You may copy and use this module as you see fit with no
# guarantee implied provided you keep this notice in all copies.
# *****END NOTICE************

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import numpy

__all__ = ["BrentResult", "bracket", "brent"]

_gold = 1.618034
_cg = 0.3819660
_mintol = 1.0e-11
_verysmall_num = 1e-21


@dataclass
class BrentResult:
    xmin: float
    fval: float
    iterations: int
    funcalls: int


def bracket(
    func: Callable[[float], float],
    xa: float = 0.0,
    xb: float = 1.0,
    grow_limit: float = 110.0,
    maxiter: int = 1000,
) -> tuple[float, float, float, float, float, float, int]:
    """Given a function and distinct initial points, search in the
    downhill direction (as defined by the initial points) and return
    new points xa, xb, xc that bracket the minimum of the function
    f(xa) > f(xb) < f(xc).

    Returns
    -------
    xa, xb, xc, fa, fb, fc, funcalls
    """
    fa = func(xa)
    fb = func(xb)
    if fa < fb:
        xa, xb, fa, fb = xb, xa, fb, fa
    xc = xb + _gold * (xb - xa)
    fc = func(xc)
    funcalls = 3
    for _ in range(maxiter):
        if not fc < fb:
            return xa, xb, xc, fa, fb, fc, funcalls

        tmp1 = (xb - xa) * (fb - fc)
        tmp2 = (xb - xc) * (fb - fa)
        val = tmp2 - tmp1
        denom = 2.0 * _verysmall_num if abs(val) < _verysmall_num else 2.0 * val
        w = xb - ((xb - xc) * tmp2 - (xb - xa) * tmp1) / denom
        wlim = xb + grow_limit * (xc - xb)
        if (w - xc) * (xb - w) > 0.0:
            # parabolic minimum lies between xb and xc
            fw = func(w)
            funcalls += 1
            if fw < fc:
                return xb, w, xc, fb, fw, fc, funcalls
            if fw > fb:
                return xa, xb, w, fa, fb, fw, funcalls
            w = xc + _gold * (xc - xb)
            fw = func(w)
            funcalls += 1
        elif (w - wlim) * (wlim - xc) >= 0.0:
            w = wlim
            fw = func(w)
            funcalls += 1
        elif (w - wlim) * (xc - w) > 0.0:
            fw = func(w)
            funcalls += 1
            if fw < fc:
                xb, xc = xc, w
                w = xc + _gold * (xc - xb)
                fb, fc = fc, fw
                fw = func(w)
                funcalls += 1
        else:
            w = xc + _gold * (xc - xb)
            fw = func(w)
            funcalls += 1
        xa, xb, xc = xb, xc, w
        fa, fb, fc = fb, fc, fw

    msg = "Too many iterations."
    raise RuntimeError(msg)


class Brent:
    """Brent's method, parabolic interpolation with a golden section
    fallback. A golden section step is always taken while any of the
    retained points has an infinite value."""

    def __init__(
        self, func: Callable[[float], float], tol: float = 1e-6, maxiter: int = 100
    ) -> None:
        self.func = func
        self.tol = tol
        self.maxiter = maxiter
        self.funcalls = 0
        self._brack_info: tuple[float, ...] | None = None

    def set_bracket(self, brack: tuple[float, ...] | None = None) -> None:
        func = self.func
        if brack is None:
            *info, funcalls = bracket(func)
        elif len(brack) == 2:
            *info, funcalls = bracket(func, xa=brack[0], xb=brack[1])
        elif len(brack) == 3:
            xa, xb, xc = brack
            if xa > xc:
                xa, xc = xc, xa
            if not xa < xb < xc:
                msg = "Not a bracketing interval."
                raise ValueError(msg)
            info = [xa, xb, xc, func(xa), func(xb), func(xc)]
            if not (info[4] < info[3] and info[4] < info[5]):
                msg = "Not a bracketing interval."
                raise ValueError(msg)
            funcalls = 3
        else:
            msg = "Bracketing interval must be length 2 or 3 sequence."
            raise ValueError(msg)
        self.funcalls += funcalls
        self._brack_info = tuple(info)

    def optimize(self) -> BrentResult:
        if self._brack_info is None:
            self.set_bracket(None)
        func = self.func
        xa, xb, xc, *_ = self._brack_info
        a, b = (xa, xc) if xa < xc else (xc, xa)
        x = w = v = xb
        fw = fv = fx = func(x)
        self.funcalls += 1
        deltax = 0.0
        rat = 0.0
        iterations = 0
        while iterations < self.maxiter:
            tol1 = self.tol + _mintol
            tol2 = 2.0 * tol1
            xmid = 0.5 * (a + b)
            if abs(x - xmid) < (tol2 - 0.5 * (b - a)):
                break

            golden = numpy.isposinf([fw, fv, fx]).any() or abs(deltax) <= tol1
            if not golden:
                tmp1 = (x - w) * (fx - fv)
                tmp2 = (x - v) * (fx - fw)
                p = (x - v) * tmp2 - (x - w) * tmp1
                tmp2 = 2.0 * (tmp2 - tmp1)
                if tmp2 > 0.0:
                    p = -p
                tmp2 = abs(tmp2)
                dx_temp = deltax
                deltax = rat
                if (
                    (p > tmp2 * (a - x))
                    and (p < tmp2 * (b - x))
                    and (abs(p) < abs(0.5 * tmp2 * dx_temp))
                ):
                    # parabolic step is useful
                    rat = p / tmp2
                    u = x + rat
                    if (u - a) < tol2 or (b - u) < tol2:
                        rat = tol1 if xmid - x >= 0 else -tol1
                else:
                    golden = True

            if golden:
                deltax = a - x if x >= xmid else b - x
                rat = _cg * deltax

            if abs(rat) < tol1:
                u = x + tol1 if rat >= 0 else x - tol1
            else:
                u = x + rat
            fu = func(u)
            self.funcalls += 1

            if fu > fx:
                if u < x:
                    a = u
                else:
                    b = u
                if (fu <= fw) or (w == x):
                    v, w = w, u
                    fv, fw = fw, fu
                elif (fu <= fv) or (v == x) or (v == w):
                    v = u
                    fv = fu
            else:
                if u >= x:
                    a = x
                else:
                    b = x
                v, w, x = w, x, u
                fv, fw, fx = fw, fx, fu

            iterations += 1

        return BrentResult(
            xmin=x, fval=fx, iterations=iterations, funcalls=self.funcalls
        )


def brent(
    func: Callable[[float], float],
    brack: tuple[float, ...] | None = None,
    tol: float = 1e-6,
    maxiter: int = 100,
) -> BrentResult:
    """Given a function of one variable and a possible bracketing interval,
    return the minimum of the function isolated to an absolute precision of
    tol.

    Parameters
    ----------
    func
        objective function, may return +inf
    brack
        Triple (a,b,c) where (a<b<c) and func(b) < func(a),func(c). If
        bracket consists of two numbers (a,c) then they are assumed to be
        a starting interval for a downhill bracket search (see `bracket`).
    tol
        absolute tolerance on x
    maxiter
        maximum number of iterations of the refinement

    Notes
    -----
    Uses inverse parabolic interpolation when possible to speed up
    convergence of golden section method.
    """
    optimiser = Brent(func=func, tol=tol, maxiter=maxiter)
    optimiser.set_bracket(brack)
    return optimiser.optimize()
