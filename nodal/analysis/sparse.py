"""Sparse LU solver with cached symbolic analysis

The solve is split in two phases so that the numeric path never redoes
pattern work:

    analyze(rows, cols, n)        once per sparsity pattern
        - deduplicates the COO pattern into a CSC structure
        - records the COO -> CSC scatter map (duplicates are summed)
        - computes a reverse Cuthill-McKee fill-reducing ordering
        - rejects structurally singular patterns (no perfect matching
          between rows and columns)

    factorize(symbolic, values)   every Newton iteration
        - scatters the COO values into the CSC data array
        - SuperLU factorization with partial pivoting on the permuted matrix
        - rejects exactly singular matrices and vanishing pivots

SingularMatrixError carries the offending row/column, mapped back to the
original unknown ordering (and to unknown names when provided).

Uses scipy.sparse (SuperLU via splu, csgraph for ordering and matching).
"""

from typing import NamedTuple, Optional, Sequence

import numpy as np
from jaxtyping import Float
from scipy.sparse import csc_matrix, csr_matrix
from scipy.sparse.csgraph import maximum_bipartite_matching, reverse_cuthill_mckee
from scipy.sparse.linalg import splu

from nodal.errors import SingularMatrixError
from nodal.logging import logger

# Pivots below this magnitude are treated as zero. It is absolute, not
# relative, so that gmin-sized conductances (1e-12) still factor.
PIVOT_TOLERANCE = 1e-18


class SymbolicFactorization(NamedTuple):
    """Pattern-only analysis of a sparse matrix

    Attributes:
        n: Matrix dimension
        indices: CSC row indices of the deduplicated pattern
        indptr: CSC column pointers
        scatter: For each COO entry, its position in the CSC data array
        perm: Fill-reducing symmetric permutation (new position -> original index)
    """
    n: int
    indices: np.ndarray
    indptr: np.ndarray
    scatter: np.ndarray
    perm: np.ndarray

    @property
    def nnz(self) -> int:
        return len(self.indices)


def _name(names: Optional[Sequence[str]], index: Optional[int]) -> Optional[str]:
    if names is None or index is None:
        return None
    return names[index]


def _unmatched(matrix: csr_matrix) -> Optional[int]:
    """Row index without a column partner in a maximum matching, if any"""
    matching = maximum_bipartite_matching(matrix, perm_type="column")
    missing = np.flatnonzero(matching < 0)
    return int(missing[0]) if len(missing) else None


def analyze(
    rows: np.ndarray,
    cols: np.ndarray,
    n: int,
    names: Optional[Sequence[str]] = None,
) -> SymbolicFactorization:
    """Symbolic analysis of a COO pattern

    Args:
        rows: COO row indices (duplicates allowed)
        cols: COO column indices
        n: Matrix dimension
        names: Optional unknown names for error messages

    Returns:
        SymbolicFactorization reusable for any values on this pattern

    Raises:
        SingularMatrixError: If the pattern is structurally singular
        ValueError: If an index is out of range
    """
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    if rows.shape != cols.shape:
        raise ValueError(f"rows and cols differ in shape: {rows.shape} vs {cols.shape}")
    if n <= 0:
        raise ValueError(f"Matrix dimension must be positive, got {n}")
    if len(rows) and (rows.min() < 0 or cols.min() < 0 or rows.max() >= n or cols.max() >= n):
        raise ValueError(f"COO index out of range for n={n}")

    # CSC order: column-major linear key
    keys = cols * n + rows
    unique_keys, scatter = np.unique(keys, return_inverse=True)
    indices = unique_keys % n
    col_of = unique_keys // n
    indptr = np.zeros(n + 1, dtype=np.int64)
    np.cumsum(np.bincount(col_of, minlength=n), out=indptr[1:])

    pattern = csc_matrix((np.ones(len(indices)), indices, indptr), shape=(n, n))

    row = _unmatched(pattern.tocsr())
    if row is not None:
        raise SingularMatrixError(
            f"Matrix is structurally singular: row {row}"
            + (f" ({names[row]})" if names is not None else "")
            + " cannot be matched to any column",
            row=row,
            name=_name(names, row),
        )

    symmetric = (pattern + pattern.T).tocsr()
    perm = np.asarray(reverse_cuthill_mckee(symmetric, symmetric_mode=True), dtype=np.int64)

    logger.debug(f"Sparse analysis: n={n}, coo={len(rows)}, nnz={len(indices)}")
    return SymbolicFactorization(
        n=n, indices=indices.astype(np.int64), indptr=indptr,
        scatter=scatter.astype(np.int64).ravel(), perm=perm,
    )


class NumericFactorization:
    """LU factors of one matrix on a fixed symbolic pattern"""

    def __init__(self, symbolic: SymbolicFactorization, lu):
        self.symbolic = symbolic
        self._lu = lu

    def solve(self, rhs: Float[np.ndarray, "n"]) -> Float[np.ndarray, "n"]:
        """Solve A x = rhs"""
        perm = self.symbolic.perm
        x = np.empty(self.symbolic.n)
        x[perm] = self._lu.solve(np.asarray(rhs, dtype=np.float64)[perm])
        return x


def assemble_csc(symbolic: SymbolicFactorization, values: np.ndarray) -> csc_matrix:
    """CSC matrix from COO values in pattern order (duplicates summed)"""
    data = np.bincount(symbolic.scatter, weights=values, minlength=symbolic.nnz)
    return csc_matrix((data, symbolic.indices, symbolic.indptr), shape=(symbolic.n, symbolic.n))


def factorize(
    symbolic: SymbolicFactorization,
    values: Float[np.ndarray, "nnz"],
    names: Optional[Sequence[str]] = None,
    pivot_tolerance: float = PIVOT_TOLERANCE,
) -> NumericFactorization:
    """Numeric LU factorization

    Args:
        symbolic: Result of analyze() for this pattern
        values: COO values in the order the pattern was analyzed
        names: Optional unknown names for error messages
        pivot_tolerance: Absolute magnitude below which a pivot counts as zero

    Returns:
        NumericFactorization ready to solve

    Raises:
        SingularMatrixError: If the matrix is (numerically) singular
        ValueError: If values has the wrong length or is not finite
    """
    values = np.asarray(values, dtype=np.float64)
    if len(values) != len(symbolic.scatter):
        raise ValueError(f"Expected {len(symbolic.scatter)} values, got {len(values)}")
    if not np.all(np.isfinite(values)):
        raise ValueError("Matrix contains non-finite values")

    matrix = assemble_csc(symbolic, values)
    perm = symbolic.perm
    permuted = matrix[perm, :][:, perm].tocsc()

    try:
        lu = splu(permuted, permc_spec="NATURAL")
    except RuntimeError as e:
        row, col = _locate_singularity(matrix)
        raise SingularMatrixError(
            f"Matrix is singular ({e})" + _where(row, col, names),
            row=row, col=col, name=_name(names, row if row is not None else col),
        ) from e

    pivots = np.abs(lu.U.diagonal())
    bad = np.flatnonzero(~(pivots > pivot_tolerance))
    if len(bad):
        j = int(bad[0])
        col = int(perm[j])
        row = int(perm[np.flatnonzero(lu.perm_r == j)[0]])
        raise SingularMatrixError(
            f"Matrix is numerically singular: pivot {pivots[j]:.3e}" + _where(row, col, names),
            row=row, col=col, name=_name(names, col),
        )

    return NumericFactorization(symbolic, lu)


def _where(row: Optional[int], col: Optional[int], names: Optional[Sequence[str]]) -> str:
    parts = []
    if row is not None:
        parts.append(f"row {row}" + (f" ({names[row]})" if names is not None else ""))
    if col is not None:
        parts.append(f"column {col}" + (f" ({names[col]})" if names is not None else ""))
    return " at " + ", ".join(parts) if parts else ""


def _locate_singularity(matrix: csc_matrix):
    """Best-effort (row, col) of a numerically singular matrix

    Explicit zeros are dropped and the remaining nonzero structure is matched;
    an unmatched row or an empty column points at the defect.
    """
    nonzero = matrix.copy()
    nonzero.eliminate_zeros()
    empty_cols = np.flatnonzero(np.diff(nonzero.indptr) == 0)
    csr = nonzero.tocsr()
    empty_rows = np.flatnonzero(np.diff(csr.indptr) == 0)
    if len(empty_rows) or len(empty_cols):
        return (int(empty_rows[0]) if len(empty_rows) else None,
                int(empty_cols[0]) if len(empty_cols) else None)
    return _unmatched(csr), None


class SparseLUSolver:
    """Sparse solver that reuses one symbolic analysis across factorizations

    Usage:
        solver = SparseLUSolver(assembler.rows, assembler.cols, n)
        dx = solver.solve(system.jacobian, -system.residual)

    Attributes:
        analyze_count: Number of symbolic analyses performed (1 after first use)
        factor_count: Number of numeric factorizations performed
    """

    def __init__(self, rows: np.ndarray, cols: np.ndarray, n: int,
                 names: Optional[Sequence[str]] = None,
                 pivot_tolerance: float = PIVOT_TOLERANCE):
        self.rows = np.asarray(rows, dtype=np.int64)
        self.cols = np.asarray(cols, dtype=np.int64)
        self.n = n
        self.names = names
        self.pivot_tolerance = pivot_tolerance
        self._symbolic: Optional[SymbolicFactorization] = None
        self.analyze_count = 0
        self.factor_count = 0

    @property
    def symbolic(self) -> SymbolicFactorization:
        if self._symbolic is None:
            self._symbolic = analyze(self.rows, self.cols, self.n, self.names)
            self.analyze_count += 1
        return self._symbolic

    def factorize(self, values: np.ndarray) -> NumericFactorization:
        numeric = factorize(self.symbolic, values, self.names, self.pivot_tolerance)
        self.factor_count += 1
        return numeric

    def solve(self, values: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        """Factorize and solve J x = rhs in one call"""
        return self.factorize(values).solve(rhs)
