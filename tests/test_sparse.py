"""Tests for the sparse LU solver"""

import numpy as np
import pytest

from nodal.analysis.sparse import SparseLUSolver, analyze, assemble_csc, factorize
from nodal.errors import SingularMatrixError


def _coo(dense):
    rows, cols = np.nonzero(np.ones_like(dense))
    return rows, cols, dense[rows, cols]


class TestFactorization:
    def test_solves_dense_system(self):
        a = np.array([[4.0, 1.0, 0.0], [1.0, 3.0, 1.0], [0.0, 1.0, 2.0]])
        rows, cols, values = _coo(a)
        lu = factorize(analyze(rows, cols, 3), values)
        b = np.array([1.0, 2.0, 3.0])
        assert lu.solve(b) == pytest.approx(np.linalg.solve(a, b))

    def test_duplicates_are_summed(self):
        rows = np.array([0, 0, 1, 1, 0])
        cols = np.array([0, 1, 0, 1, 0])
        values = np.array([1.0, 2.0, 3.0, 4.0, 1.0])
        symbolic = analyze(rows, cols, 2)
        assert symbolic.nnz == 4
        assert assemble_csc(symbolic, values).toarray() == pytest.approx(
            np.array([[2.0, 2.0], [3.0, 4.0]])
        )

    def test_needs_pivoting(self):
        # Zero diagonal: a voltage-source-like branch row
        a = np.array([[0.0, 1.0], [1.0, 1e-3]])
        rows, cols = np.array([0, 1, 1]), np.array([1, 0, 1])
        lu = factorize(analyze(rows, cols, 2), a[rows, cols])
        assert lu.solve(np.array([1.0, 0.0])) == pytest.approx(np.linalg.solve(a, [1.0, 0.0]))

    def test_tiny_conductances_still_factor(self):
        a = np.diag([1e-12, 1e-12])
        rows, cols = np.array([0, 1]), np.array([0, 1])
        lu = factorize(analyze(rows, cols, 2), a[rows, cols])
        assert lu.solve(np.array([1e-12, 2e-12])) == pytest.approx([1.0, 2.0])


class TestSingular:
    def test_structurally_singular(self):
        rows = np.array([0, 1])
        cols = np.array([0, 0])
        with pytest.raises(SingularMatrixError) as err:
            analyze(rows, cols, 2, names=["V(a)", "V(b)"])
        assert err.value.row in (0, 1)
        assert err.value.name in ("V(a)", "V(b)")

    def test_numerically_singular(self):
        a = np.array([[1.0, 1.0], [1.0, 1.0]])
        rows, cols, values = _coo(a)
        with pytest.raises(SingularMatrixError):
            factorize(analyze(rows, cols, 2), values)

    def test_zero_row_located(self):
        a = np.array([[1.0, 0.0], [0.0, 0.0]])
        rows, cols, values = _coo(a)
        with pytest.raises(SingularMatrixError) as err:
            factorize(analyze(rows, cols, 2), values)
        assert err.value.row == 1 or err.value.col == 1

    def test_non_finite_values(self):
        rows, cols = np.array([0]), np.array([0])
        with pytest.raises(ValueError):
            factorize(analyze(rows, cols, 1), np.array([np.nan]))

    def test_bad_indices(self):
        with pytest.raises(ValueError):
            analyze(np.array([0, 2]), np.array([0, 1]), 2)


class TestReuse:
    def test_symbolic_analysis_runs_once(self):
        rows = np.array([0, 0, 1, 1])
        cols = np.array([0, 1, 0, 1])
        solver = SparseLUSolver(rows, cols, 2)
        for scale in (1.0, 2.0, 3.0):
            x = solver.solve(np.array([2.0, 1.0, 1.0, 3.0]) * scale, np.array([1.0, 1.0]))
            assert x == pytest.approx(np.linalg.solve([[2.0, 1.0], [1.0, 3.0]], [1.0, 1.0]) / scale)
        assert solver.analyze_count == 1
        assert solver.factor_count == 3

    def test_wrong_value_count(self):
        solver = SparseLUSolver(np.array([0]), np.array([0]), 1)
        with pytest.raises(ValueError):
            solver.factorize(np.array([1.0, 2.0]))
