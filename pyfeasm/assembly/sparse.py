"""pyfeasm.assembly.sparse
Global scatter targets: a growing COO accumulator, a CSR matrix with an
explicit sparsity pattern, and the vector scatter used for linear forms.
"""
from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numba
import numpy as np
import scipy.sparse as sp

from pyfeasm.errors import SizeMismatch, Unimplemented

logger = logging.getLogger(__name__)

__all__ = ["SparseMapMatrix", "SparseMatrix", "add_to_vector", "expand_pairs",
           "pattern_from_pairs"]


# ----------------------------------------------------------------------
# Pattern kernels
# ----------------------------------------------------------------------
@numba.jit(nopython=True, cache=True)
def _expand_pairs_kernel(row_ptr, row_ids, col_ptr, col_ids):
    n = len(row_ptr) - 1
    total = 0
    for e in range(n):
        total += (row_ptr[e + 1] - row_ptr[e]) * (col_ptr[e + 1] - col_ptr[e])
    out_r = np.empty(total, dtype=np.int64)
    out_c = np.empty(total, dtype=np.int64)
    k = 0
    for e in range(n):
        for a in range(row_ptr[e], row_ptr[e + 1]):
            for b in range(col_ptr[e], col_ptr[e + 1]):
                out_r[k] = row_ids[a]
                out_c[k] = col_ids[b]
                k += 1
    return out_r, out_c


def _flatten(id_lists):
    lengths = np.array([len(a) for a in id_lists], dtype=np.int64)
    ptr = np.zeros(len(lengths) + 1, dtype=np.int64)
    np.cumsum(lengths, out=ptr[1:])
    flat = (np.concatenate([np.asarray(a, dtype=np.int64) for a in id_lists])
            if len(id_lists) else np.zeros(0, dtype=np.int64))
    return ptr, flat


def expand_pairs(row_lists: Sequence, col_lists: Sequence):
    """All ``(row, col)`` pairs of ``row_lists[e] x col_lists[e]`` over ``e``."""
    if len(row_lists) != len(col_lists):
        raise SizeMismatch(f"expand_pairs: {len(row_lists)} row lists vs "
                           f"{len(col_lists)} column lists")
    row_ptr, rows = _flatten(row_lists)
    col_ptr, cols = _flatten(col_lists)
    return _expand_pairs_kernel(row_ptr, rows, col_ptr, cols)


def pattern_from_pairs(rows: np.ndarray, cols: np.ndarray, n_rows: int):
    """Per-row sorted unique column arrays (the ``idx_map`` of a pattern)."""
    rows = np.asarray(rows, dtype=np.int64)
    cols = np.asarray(cols, dtype=np.int64)
    if len(rows) == 0:
        return [np.zeros(0, dtype=np.int64) for _ in range(n_rows)]
    if rows.max() >= n_rows:
        raise SizeMismatch(f"Row index {rows.max()} outside {n_rows} rows")
    width = int(cols.max()) + 1
    keys = np.unique(rows * width + cols)
    r, c = np.divmod(keys, width)
    bounds = np.searchsorted(r, np.arange(n_rows + 1))
    return [c[bounds[i]:bounds[i + 1]] for i in range(n_rows)]


def _pattern_arrays(idx_map: Sequence[Iterable[int]]):
    rows = [np.unique(np.fromiter(s, dtype=np.int64)) if not isinstance(s, np.ndarray)
            else np.unique(s.astype(np.int64)) for s in idx_map]
    indptr = np.zeros(len(rows) + 1, dtype=np.int64)
    np.cumsum([len(r) for r in rows], out=indptr[1:])
    indices = np.concatenate(rows) if rows else np.zeros(0, dtype=np.int64)
    return indptr, indices.astype(np.int64)


# ----------------------------------------------------------------------
# Element scatter helpers
# ----------------------------------------------------------------------
def _coefficient_block(E, f, shape):
    """Factor array broadcastable to the integrated matrix of ``E``."""
    f = np.asarray(f, dtype=float)
    if f.ndim == 0:
        return f
    nr, nc = shape
    n = max(E.n_coeff, 1)
    if f.ndim == 1:
        if nr % n or len(f) < n:
            raise SizeMismatch(f"Vector coefficient of length {len(f)} for {n} "
                               f"components over {nr} rows")
        comp = np.arange(nr) // (nr // n)
        return f[comp][:, None]
    if f.ndim == 2:
        if nr % n or nc % n or f.shape[0] < n or f.shape[1] < n:
            raise SizeMismatch(f"Matrix coefficient {f.shape} for {n} components "
                               f"over a {shape} element matrix")
        ci = np.arange(nr) // (nr // n)
        cj = np.arange(nc) // (nc // n)
        return f[np.ix_(ci, cj)]
    raise Unimplemented(f"Scatter with a coefficient of shape {f.shape}")


def _element_entries(E, f=1.0, scale=1.0):
    res = E.integrated_value()
    vals = res.mat * _coefficient_block(E, f, res.mat.shape) * scale
    rr = np.repeat(res.row_ids, res.cols())
    cc = np.tile(res.col_ids, res.rows())
    return rr, cc, np.ravel(vals)


def add_to_vector(R: np.ndarray, E, f=1.0, scale: float = 1.0) -> np.ndarray:
    """
    ``R[row_ids] += scale * f * mat`` summed over the operator columns.

    ``f`` is a scalar or one value per operator column (``mat @ f``).
    """
    res = E.integrated_value()
    f = np.asarray(f, dtype=float)
    if f.ndim == 0:
        vals = res.mat.sum(axis=1) * f
    elif f.ndim == 1:
        if len(f) < res.cols():
            raise SizeMismatch(f"Vector coefficient of length {len(f)} for "
                               f"{res.cols()} operator columns")
        vals = res.mat @ f[:res.cols()]
    else:
        raise Unimplemented(f"Vector scatter with a coefficient of shape {f.shape}")
    if len(res.row_ids) and res.row_ids.max() >= len(R):
        raise SizeMismatch(f"Row id {res.row_ids.max()} outside a vector of length {len(R)}")
    np.add.at(R, res.row_ids, vals * scale)
    return R


# ----------------------------------------------------------------------
# Growing COO accumulator
# ----------------------------------------------------------------------
class SparseMapMatrix:
    """
    Growing accumulator backed by a ``scipy.sparse.coo_matrix``.

    Element contributions are appended as triplet chunks and summed into the
    canonical COO storage on the next read. Duplicates are summed, explicit
    zeros are kept (``clean`` keeps the pattern), and the shape grows to fit
    every index added.
    """

    def __init__(self, rows: int = 0, cols: int = 0):
        self._rows = int(rows)
        self._cols = int(cols)
        self._coo = sp.coo_matrix(self.shape)
        self._pending = []

    @property
    def shape(self):
        return self._rows, self._cols

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return self._cols

    @property
    def nnz(self) -> int:
        return self._compress().nnz

    def _compress(self) -> sp.coo_matrix:
        if self._pending or self._coo.shape != self.shape:
            rr = [self._coo.row] + [p[0] for p in self._pending]
            cc = [self._coo.col] + [p[1] for p in self._pending]
            vv = [self._coo.data] + [p[2] for p in self._pending]
            A = sp.coo_matrix((np.concatenate(vv), (np.concatenate(rr), np.concatenate(cc))),
                              shape=self.shape)
            A.sum_duplicates()
            self._coo = A
            self._pending = []
        return self._coo

    def _find(self, i: int, j: int):
        A = self._compress()
        hit = np.flatnonzero((A.row == i) & (A.col == j))
        return int(hit[0]) if len(hit) else None

    def add_values(self, rr, cc, vals):
        """Vectorized :meth:`add_val`; duplicate positions are summed."""
        rr = np.asarray(rr, dtype=np.int64).ravel()
        cc = np.asarray(cc, dtype=np.int64).ravel()
        vals = np.asarray(vals, dtype=float).ravel()
        if not (len(rr) == len(cc) == len(vals)):
            raise SizeMismatch(f"add_values: {len(rr)} rows, {len(cc)} cols, {len(vals)} values")
        if len(rr) == 0:
            return
        self._rows = max(self._rows, int(rr.max()) + 1)
        self._cols = max(self._cols, int(cc.max()) + 1)
        self._pending.append((rr, cc, vals))

    def resize(self, rows: int, cols: int):
        A = self._compress()
        keep = (A.row < rows) & (A.col < cols)
        self._rows, self._cols = int(rows), int(cols)
        self._coo = sp.coo_matrix((A.data[keep], (A.row[keep], A.col[keep])), shape=self.shape)

    def add_val(self, i: int, j: int, v: float):
        self.add_values(np.array([i]), np.array([j]), np.array([v], dtype=float))

    def set_val(self, i: int, j: int, v: float):
        k = self._find(i, j)
        if k is None:
            self.add_val(i, j, v)
        else:
            self._coo.data[k] = v

    def get_val(self, i: int, j: int) -> float:
        k = self._find(i, j)
        return 0.0 if k is None else float(self._coo.data[k])

    def add(self, E, f=1.0, scale: float = 1.0):
        """Scatter ``scale * f * E.mat`` at ``(row_ids, col_ids)``."""
        rr, cc, vals = _element_entries(E, f, scale)
        self.add_values(rr, cc, vals)

    def clean(self):
        """Zero all values, keep the pattern."""
        self._compress().data[:] = 0.0

    def clear(self):
        self._rows = self._cols = 0
        self._coo = sp.coo_matrix(self.shape)
        self._pending = []

    def to_coo(self) -> sp.coo_matrix:
        return self._compress().copy()

    def to_csr(self) -> sp.csr_matrix:
        return self.to_coo().tocsr()

    def to_dense(self) -> np.ndarray:
        return self._compress().toarray()

    def __repr__(self):
        return f"SparseMapMatrix(shape={self.shape}, nnz={self.nnz})"



# ----------------------------------------------------------------------
# CSR with explicit pattern
# ----------------------------------------------------------------------
class SparseMatrix:
    """
    CSR matrix whose nonzero pattern is allocated before values are added.

    Values can only be added inside the pattern; entries outside raise
    :class:`SizeMismatch`. ``(rows(), cols())`` serves as the "pattern already
    built" marker of the batch map.
    """

    def __init__(self, rows: int = 0, cols: int = 0):
        self.clear()
        self._rows, self._cols = int(rows), int(cols)
        self._indptr = np.zeros(self._rows + 1, dtype=np.int64)

    def clear(self):
        """Drop values and pattern."""
        self._rows = self._cols = 0
        self._indptr = np.zeros(1, dtype=np.int64)
        self._indices = np.zeros(0, dtype=np.int64)
        self._data = np.zeros(0)
        self._keys = np.zeros(0, dtype=np.int64)
        self._valid = False

    @property
    def valid(self) -> bool:
        return self._valid

    @property
    def shape(self):
        return self._rows, self._cols

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return self._cols

    @property
    def nnz(self) -> int:
        return len(self._indices)

    @property
    def values(self) -> np.ndarray:
        return self._data

    def _set_pattern(self, indptr, indices, n_cols):
        self._rows = len(indptr) - 1
        self._cols = int(n_cols)
        self._indptr = indptr
        self._indices = indices
        self._data = np.zeros(len(indices))
        row_of = np.repeat(np.arange(self._rows, dtype=np.int64), np.diff(indptr))
        self._keys = row_of * max(self._cols, 1) + indices
        self._valid = True

    def build_sparsity_pattern(self, idx_map: Sequence[Iterable[int]], cols: int = 0):
        """Allocate the pattern from one column set per row; values are zeroed."""
        indptr, indices = _pattern_arrays(idx_map)
        n_cols = max(int(cols), int(indices.max()) + 1 if len(indices) else 0)
        self._set_pattern(indptr, indices, n_cols)
        logger.debug(f"built sparsity pattern {self.shape}, nnz={self.nnz}")

    def add_sparsity_pattern(self, idx_map: Sequence[Iterable[int]]):
        """Union ``idx_map`` into the pattern, keeping the current values."""
        if not self._valid:
            return self.build_sparsity_pattern(idx_map, self._cols)
        old_rows = np.repeat(np.arange(self._rows, dtype=np.int64), np.diff(self._indptr))
        old_cols = self._indices
        old_data = self._data

        new_ptr, new_idx = _pattern_arrays(idx_map)
        new_rows = np.repeat(np.arange(len(new_ptr) - 1, dtype=np.int64), np.diff(new_ptr))

        n_rows = max(self._rows, len(new_ptr) - 1)
        n_cols = max(self._cols, int(new_idx.max()) + 1 if len(new_idx) else 0)
        merged = pattern_from_pairs(np.concatenate([old_rows, new_rows]),
                                    np.concatenate([old_cols, new_idx]), n_rows)
        indptr, indices = _pattern_arrays(merged)
        self._set_pattern(indptr, indices, n_cols)
        if len(old_data):
            self._data[self._positions(old_rows, old_cols)] = old_data
        logger.debug(f"merged sparsity pattern {self.shape}, nnz={self.nnz}")

    def _positions(self, i, j) -> np.ndarray:
        i = np.atleast_1d(np.asarray(i, dtype=np.int64))
        j = np.atleast_1d(np.asarray(j, dtype=np.int64))
        if not self._valid:
            raise SizeMismatch("SparseMatrix has no sparsity pattern")
        if len(i) and (i.max() >= self._rows or j.max() >= self._cols):
            raise SizeMismatch(f"Entry ({i.max()}, {j.max()}) outside shape {self.shape}")
        query = i * max(self._cols, 1) + j
        if len(query) and not len(self._keys):
            raise SizeMismatch(f"Entry ({i[0]}, {j[0]}) is not in the empty sparsity pattern")
        pos = np.searchsorted(self._keys, query)
        hit = (pos < len(self._keys)) & (self._keys[np.minimum(pos, len(self._keys) - 1)] == query)
        if not np.all(hit):
            k = int(np.argmin(hit))
            raise SizeMismatch(f"Entry ({i[k]}, {j[k]}) is not in the sparsity pattern")
        return pos

    def add_val(self, i: int, j: int, v: float):
        self._data[self._positions(i, j)[0]] += v

    def set_val(self, i: int, j: int, v: float):
        self._data[self._positions(i, j)[0]] = v

    def get_val(self, i: int, j: int) -> float:
        try:
            return float(self._data[self._positions(i, j)[0]])
        except SizeMismatch:
            return 0.0

    def add(self, E, f=1.0, scale: float = 1.0):
        """Scatter ``scale * f * E.mat``; every entry must be in the pattern."""
        rr, cc, vals = _element_entries(E, f, scale)
        np.add.at(self._data, self._positions(rr, cc), vals)

    def clean(self):
        """Zero values, keep the pattern."""
        self._data[:] = 0.0

    def to_scipy(self) -> sp.csr_matrix:
        return sp.csr_matrix((self._data.copy(), self._indices.copy(), self._indptr.copy()),
                             shape=self.shape)

    def to_dense(self) -> np.ndarray:
        return self.to_scipy().toarray()

    def __repr__(self):
        return f"SparseMatrix(shape={self.shape}, nnz={self.nnz}, valid={self._valid})"
