from unittest import TestCase

import numpy

from phyloplace.maths.scipy_optimize import Brent, BrentResult, bracket, brent


def quadratic(x):
    return (x - 2.0) ** 2 + 1.0


def bounded_linear(x):
    # minimum on the boundary, infeasible for negative x
    return numpy.inf if x < 0 else x


class BracketTests(TestCase):
    def test_bracket(self):
        xa, xb, xc, fa, fb, fc, funcalls = bracket(quadratic, 0.0, 1.0)
        self.assertLess(fb, fa)
        self.assertLessEqual(fb, fc)
        self.assertLess(min(xa, xc), xb)
        self.assertLess(xb, max(xa, xc))
        self.assertGreaterEqual(funcalls, 3)

    def test_bracket_stops_at_infinity(self):
        xa, xb, xc, fa, fb, fc, _ = bracket(bounded_linear, 1.0, 0.5)
        self.assertEqual(xb, 0.5)
        self.assertTrue(numpy.isinf(fc))


class BrentTests(TestCase):
    def test_brent_quadratic(self):
        result = brent(quadratic, brack=(0.0, 1.0), tol=1e-8)
        self.assertIsInstance(result, BrentResult)
        self.assertAlmostEqual(result.xmin, 2.0, places=6)
        self.assertAlmostEqual(result.fval, 1.0, places=10)
        self.assertGreater(result.funcalls, 0)

    def test_brent_default_bracket(self):
        result = brent(quadratic)
        self.assertAlmostEqual(result.xmin, 2.0, places=5)

    def test_brent_three_point_bracket(self):
        result = brent(quadratic, brack=(3.0, 1.5, 0.0))
        self.assertAlmostEqual(result.xmin, 2.0, places=5)

    def test_brent_boundary_minimum(self):
        """infinite values outside the feasible interval are tolerated"""
        result = brent(bounded_linear, brack=(0.5, 1.0), tol=1e-7)
        self.assertGreaterEqual(result.xmin, 0.0)
        self.assertLess(result.xmin, 1e-5)
        self.assertTrue(numpy.isfinite(result.fval))

    def test_brent_iteration_budget(self):
        result = brent(quadratic, brack=(0.0, 1.0), tol=1e-12, maxiter=3)
        self.assertLessEqual(result.iterations, 3)

    def test_invalid_brackets(self):
        with self.assertRaises(ValueError):
            brent(quadratic, brack=(0.0, 5.0, 6.0))
        with self.assertRaises(ValueError):
            brent(quadratic, brack=(0.0, 1.0, 2.0, 3.0))

    def test_set_bracket_records_calls(self):
        optimiser = Brent(quadratic)
        optimiser.set_bracket((1.0, 2.5, 4.0))
        self.assertEqual(optimiser.funcalls, 3)
        self.assertAlmostEqual(optimiser.optimize().xmin, 2.0, places=5)
