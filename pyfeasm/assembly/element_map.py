"""pyfeasm.assembly.element_map
Ordered collection of per-entity operators over a whole mesh.

The map mirrors the single-operator algebra entrywise, scatters linear and
bilinear forms into global targets and builds sparsity patterns. A map with a
single entry of quadrature order 0 is a *constant space*: one global unknown
per field component (e.g. a Lagrange multiplier) without spatial basis.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

import numpy as np

from pyfeasm.assembly import algebra
from pyfeasm.assembly.coefficients import evaluate_field, is_constant, is_per_entity
from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.assembly.field import FEAFunction
from pyfeasm.assembly.sparse import (SparseMapMatrix, SparseMatrix, add_to_vector,
                                     expand_pairs, pattern_from_pairs)
from pyfeasm.config import get_config
from pyfeasm.errors import SizeMismatch, Unimplemented, assert_equal_size, assert_size
from pyfeasm.integration.quadrature import QuadratureProvider, default_provider

logger = logging.getLogger(__name__)

__all__ = ["ElementMatrixMap", "create_value_map", "create_u_map",
           "create_gradient_map", "create_du_map", "create_identity_map"]


def _is_flat(f) -> bool:
    if isinstance(f, np.ndarray):
        return f.ndim == 1
    return all(np.ndim(v) == 0 for v in f)


def _cell_id(E: ElementMatrix, i: int) -> int:
    return E.entity.id if E.entity is not None else i


class ElementMatrixMap:
    """
    Per-entity operators of one field, aligned with the cells (or boundaries)
    they were built on.

    ``dof_a`` is the global extent of the rows (``n_coeff * dof_per_coeff +
    dof_offset``) and ``dof_b`` that of the columns; both size global
    vectors and serve as the "pattern already built" marker of
    :meth:`fill_sparsity_pattern`.
    """

    def __init__(self, provider: Optional[QuadratureProvider] = None):
        self._provider = provider if provider is not None else default_provider()
        self._mats: List[ElementMatrix] = []
        self._n_coeff = 1
        self._dof_per_coeff = 0
        self._dof_offset = 0
        self._dof_a = 0
        self._dof_b = 0
        self._quad_pnts = None
        # row collector
        self._rows = 0
        self._cols = 0
        self._row: List[int] = []
        self._row_mats: List[np.ndarray] = []
        self._row_ids: List[np.ndarray] = []

    # ------------------------------------------------------------------
    # Container
    # ------------------------------------------------------------------
    def resize(self, n: int):
        n = int(n)
        if n < len(self._mats):
            del self._mats[n:]
        while len(self._mats) < n:
            self._mats.append(ElementMatrix(provider=self._provider))
        self._quad_pnts = None
        self._rows = len(self._mats)

    def push_back(self, E: ElementMatrix):
        self._mats.append(E)
        self._quad_pnts = None
        self._rows = len(self._mats)

    def clear(self):
        self._mats = []
        self._quad_pnts = None

    def size(self) -> int:
        return len(self._mats)

    def mats(self) -> List[ElementMatrix]:
        return self._mats

    def __len__(self):
        return len(self._mats)

    def __iter__(self):
        return iter(self._mats)

    def __getitem__(self, i) -> ElementMatrix:
        return self._mats[i]

    def __repr__(self):
        return (f"ElementMatrixMap(size={self.size()}, dof=({self._dof_a}, {self._dof_b}), "
                f"nCoeff={self._n_coeff}, constant_space={self.is_constant_space})")

    @property
    def provider(self):
        return self._provider

    # ------------------------------------------------------------------
    # Dof layout
    # ------------------------------------------------------------------
    def set_dofs(self, n_coeff: int, dof_per_coeff: int, dof_offset: int = 0):
        self._n_coeff = int(n_coeff)
        self._dof_per_coeff = int(dof_per_coeff)
        self._dof_offset = int(dof_offset)
        self._dof_a = self._n_coeff * self._dof_per_coeff + self._dof_offset
        self._dof_b = self._dof_a

    def set_dof(self, dof_a: int, dof_b: int = 0):
        self._dof_a = int(dof_a)
        self._dof_b = int(dof_b)

    def _copy_layout(self, other: "ElementMatrixMap"):
        self._n_coeff = other._n_coeff
        self._dof_per_coeff = other._dof_per_coeff
        self._dof_offset = other._dof_offset
        self._dof_a = other._dof_a
        self._dof_b = other._dof_b

    @property
    def dof_a(self) -> int:
        return self._dof_a

    @property
    def dof_b(self) -> int:
        return self._dof_b

    @property
    def dof(self) -> int:
        return self._dof_a

    @property
    def n_coeff(self) -> int:
        return self._n_coeff

    @property
    def dof_per_coeff(self) -> int:
        return self._dof_per_coeff

    @property
    def dof_offset(self) -> int:
        return self._dof_offset

    @property
    def is_constant_space(self) -> bool:
        return len(self._mats) == 1 and self._mats[0].order == 0

    def _result(self, out: Optional["ElementMatrixMap"]) -> "ElementMatrixMap":
        return out if out is not None else ElementMatrixMap(provider=self._provider)

    # ------------------------------------------------------------------
    # Entrywise algebra
    # ------------------------------------------------------------------
    def mult(self, f, out: Optional["ElementMatrixMap"] = None) -> "ElementMatrixMap":
        """
        Scale every operator by ``f``.

        Constants apply to every entry. A 1-D sequence of length ``dof_a``
        holds per-node values (:func:`~pyfeasm.assembly.algebra.mult_n`); one
        of length ``size()`` holds one coefficient per entity id.
        """
        ret = self._result(out)
        ret._copy_layout(self)
        n = self.size()
        if is_constant(f) or (isinstance(f, np.ndarray) and f.ndim == 2):
            mats = [algebra.mult(m, f) for m in self._mats]
        elif len(f) == self._dof_a and _is_flat(f):
            mats = [algebra.mult_n(m, f) for m in self._mats]
        elif len(f) == n:
            mats = [algebra.mult(m, f[_cell_id(m, i)]) for i, m in enumerate(self._mats)]
        else:
            raise Unimplemented(
                f"Map mult with {len(f)} values for {n} entries and {self._dof_a} dofs; "
                f"wrap a constant vector in Coefficient.vector")
        ret._mats = mats
        ret._quad_pnts = None
        return ret

    def add(self, B: "ElementMatrixMap", dim: int = 0, b: float = 1.0,
            out: Optional["ElementMatrixMap"] = None) -> "ElementMatrixMap":
        assert_equal_size(self, B, "Map add")
        ret = self._result(out)
        ret._copy_layout(self)
        ret._mats = [algebra.add(m, B[i], dim, b) for i, m in enumerate(self._mats)]
        ret._quad_pnts = None
        return ret

    def sym(self, out: Optional["ElementMatrixMap"] = None) -> "ElementMatrixMap":
        ret = self._result(out)
        ret._copy_layout(self)
        ret._mats = [algebra.sym(m) for m in self._mats]
        ret._quad_pnts = None
        return ret

    def trace(self, out: Optional["ElementMatrixMap"] = None) -> "ElementMatrixMap":
        ret = self._result(out)
        ret._copy_layout(self)
        ret._mats = [algebra.trace(m) for m in self._mats]
        ret._quad_pnts = None
        return ret

    def dot(self, B: "ElementMatrixMap",
            out: Optional["ElementMatrixMap"] = None) -> "ElementMatrixMap":
        """
        Entrywise :func:`~pyfeasm.assembly.algebra.dot`.

        With a constant-space operand no quadrature happens: the other map's
        integrated ``(n_dof, n_coeff)`` matrices are re-indexed so that the
        constant unknowns become the rows (constant ``self``) or the columns
        (constant ``B``) of the result.
        """
        ret = self._result(out)
        if self.is_constant_space:
            c = self._mats[0]
            ret._mats = [self._constant_block(m, c, transpose=True) for m in B]
            ret.set_dof(c.n_coeff + c.dof_offset, B.dof)
        elif B.is_constant_space:
            c = B[0]
            ret._mats = [self._constant_block(m, c, transpose=False) for m in self._mats]
            ret.set_dof(self.dof, c.n_coeff + c.dof_offset)
        else:
            assert_equal_size(self, B, "Map dot")
            ret._mats = [algebra.dot(m, B[i]) for i, m in enumerate(self._mats)]
            ret.set_dof(self.dof, B.dof)
        ret._quad_pnts = None
        return ret

    @staticmethod
    def _constant_block(m: ElementMatrix, c: ElementMatrix, transpose: bool) -> ElementMatrix:
        if not m.is_integrated:
            logger.warning(f"Constant-space product with a non-integrated operator: {m!r}")
        if m.n_coeff == 0:
            raise Unimplemented("Constant-space product with an operator without coefficients")
        nc = c.n_coeff
        mat = m.mat
        if mat.shape[1] != nc:
            raise SizeMismatch(f"Constant space with {nc} coefficients against an "
                               f"operator with {mat.shape[1]} columns")
        E = ElementMatrix(m.n_coeff, m.dof_per_coeff, m.dof_offset, provider=m.provider)
        E._fill_entity_and_order(m.entity, m.order)
        ids = np.arange(c.dof_offset, c.dof_offset + nc)
        if transpose:
            E.set_ids(ids, m.row_ids)
            E.set_mat(mat.T)
        else:
            E.set_ids(m.row_ids, ids)
            E.set_mat(mat)
        return E

    # ------------------------------------------------------------------
    # Sparsity pattern
    # ------------------------------------------------------------------
    def fill_sparsity_pattern(self, R: SparseMatrix, B: Optional["ElementMatrixMap"] = None):
        """
        Allocate the pattern ``row_ids x col_ids`` (or ``row_ids x B.row_ids``)
        of every entry in ``R``; merged into an existing pattern, skipped when
        ``R`` already has the map's extent.
        """
        dof_b = self._dof_b if B is None else B.dof
        if (R.rows(), R.cols()) == (self._dof_a, dof_b):
            logger.debug(f"sparsity pattern {R.shape} already present")
            return R
        if self.is_constant_space or (B is not None and B.is_constant_space):
            raise Unimplemented("Sparsity pattern for a constant-space operand")

        t0 = time.perf_counter()
        if B is None:
            cols = [m.col_ids for m in self._mats]
        else:
            assert_equal_size(self, B, "Sparsity pattern")
            cols = [m.row_ids for m in B]
        rows, cc = expand_pairs([m.row_ids for m in self._mats], cols)
        idx_map = pattern_from_pairs(rows, cc, self._dof_a)

        if R.rows() > 0 and R.cols() > 0:
            R.add_sparsity_pattern(idx_map)
        else:
            R.build_sparsity_pattern(idx_map, dof_b)
        logger.info(f"sparsity pattern of {self.size()} operators: shape={R.shape}, "
                    f"nnz={R.nnz} ({time.perf_counter() - t0:.3f}s)")
        return R

    # ------------------------------------------------------------------
    # Integration and assembly
    # ------------------------------------------------------------------
    def _scales(self, scale) -> Callable[[int], float]:
        if np.ndim(scale) == 0:
            s = float(scale)
            return lambda i: s
        scale = np.asarray(scale, dtype=float)
        if len(scale) != self.size():
            raise SizeMismatch(f"{len(scale)} per-cell scales for {self.size()} entries")
        return lambda i: scale[i]

    def _max_row(self) -> int:
        rows = [int(m.row_ids.max()) for m in self._mats if len(m.row_ids)]
        return max(rows) + 1 if rows else 0

    def integrate(self, f, R: Optional[np.ndarray] = None, scale=1.0) -> np.ndarray:
        """
        Linear form ``R += scale * sum_cells integral(E f)``.

        ``f`` is a constant, a field, or one coefficient per entity (scalars,
        vectors, or per-quadrature values). ``scale`` is a constant or one
        factor per entity. Without ``R`` a vector covering every row id is
        returned.
        """
        if R is None:
            R = np.zeros(self._max_row())
        s = self._scales(scale)
        per_cell = is_per_entity(f, self.size(), matrix_is_constant=False)
        for i, m in enumerate(self._mats):
            cid = _cell_id(m, i)
            fi = f[cid] if per_cell else f
            if isinstance(fi, FEAFunction):
                fi = evaluate_field(fi, m)
            algebra.integrate_linear(m, fi, R, s(cid))
        return R

    def integrate_n(self, f, R: Optional[np.ndarray] = None, scale=1.0) -> np.ndarray:
        """Linear form with one scalar per global node."""
        f = np.asarray(f, dtype=float).reshape(-1)
        assert_size(f, self._dof_per_coeff, "node values per coefficient")
        if R is None:
            R = np.zeros(self._max_row())
        s = self._scales(scale)
        for i, m in enumerate(self._mats):
            algebra.integrate_n(m, f, R, s(_cell_id(m, i)))
        return R

    def integrate_bilinear(self, B: "ElementMatrixMap", f=1.0, S=None, scale: float = 1.0):
        """
        Bilinear form ``S += scale * sum_cells dot(A, B, f)``.

        ``S`` defaults to a new :class:`SparseMapMatrix`; a
        :class:`SparseMatrix` gets its pattern filled first. A constant-space
        operand scatters the first column of the other map's integrated
        matrices into the constant unknown's row or column.
        """
        if S is None:
            S = SparseMapMatrix()
        if isinstance(S, SparseMatrix):
            self.fill_sparsity_pattern(S, B)

        if self.is_constant_space:
            row = self._mats[0].dof_offset
            for m in B:
                self._scatter_constant(S, m, scale, row=row)
            return S
        if B.is_constant_space:
            col = B[0].dof_offset
            for m in self._mats:
                self._scatter_constant(S, m, scale, col=col)
            return S

        assert_equal_size(self, B, "Bilinear form")
        per_cell = is_per_entity(f, self.size())
        for i, m in enumerate(self._mats):
            fi = f[_cell_id(m, i)] if per_cell else f
            algebra.integrate_bilinear(m, B[i], fi, S, scale)
        return S

    @staticmethod
    def _scatter_constant(S, m: ElementMatrix, scale: float, row=None, col=None):
        if not m.is_integrated:
            logger.warning(f"Constant-space form with a non-integrated operator: {m!r}")
        if m.n_coeff == 0:
            raise Unimplemented("Constant-space form with an operator without coefficients")
        res = m.integrated_value()
        v = scale * res.mat[:, 0]
        fixed = np.full(len(res.row_ids), row if row is not None else col, dtype=np.int64)
        if row is not None:
            S.add_values(fixed, res.row_ids, v)
        else:
            S.add_values(res.row_ids, fixed, v)

    def assemble(self, f, target, scale: float = 1.0):
        """
        Scatter ``scale * f * mat`` of every operator into ``target``.

        ``target`` is a numpy vector, a :class:`SparseMapMatrix` or a
        :class:`SparseMatrix` (pattern filled first). ``f`` is a constant or
        one coefficient per entity.
        """
        t0 = time.perf_counter()
        if isinstance(target, SparseMatrix):
            self.fill_sparsity_pattern(target)
        per_cell = is_per_entity(f, self.size())
        for i, m in enumerate(self._mats):
            fi = f[_cell_id(m, i)] if per_cell else f
            if isinstance(target, np.ndarray):
                add_to_vector(target, m, fi, scale)
            else:
                target.add(m, fi, scale)
        logger.info(f"assembled {self.size()} operators into {type(target).__name__} "
                    f"({time.perf_counter() - t0:.3f}s)")
        return target

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    def quadrature_points(self) -> List[np.ndarray]:
        """Physical quadrature points per entry; cached until the map changes."""
        if (get_config().disable_cache or self._quad_pnts is None
                or len(self._quad_pnts) != len(self._mats)):
            self._quad_pnts = [m.quadrature_points() for m in self._mats]
        return self._quad_pnts

    def entity_centers(self) -> np.ndarray:
        return np.array([m.entity.center() for m in self._mats])

    # ------------------------------------------------------------------
    # Row collector
    # ------------------------------------------------------------------
    def add_row(self, row: int, E: ElementMatrix):
        """Store ``E``'s integrated matrix as a contribution to global row ``row``."""
        res = E.integrated_value()
        self._rows = max(int(row) + 1, self._rows)
        if len(res.row_ids):
            self._cols = max(int(res.row_ids.max()) + 1, self._cols)
        self._row.append(int(row))
        self._row_mats.append(res.mat)
        self._row_ids.append(res.row_ids)

    def mult_rows(self, a, b, m=None, n=None) -> np.ndarray:
        """
        Evaluate the collected rows as quadratic forms.

        With ``m`` given: ``ret[row] += (m - n)[ids]^T mat (a - b)[ids]`` with
        ``n`` defaulting to zero. Without ``m``: ``ret[row] += b[ids]^T mat a[ids]``.
        """
        a = np.asarray(a, dtype=float)
        b = np.asarray(b, dtype=float)
        if m is None:
            left, right = b, a
        else:
            m = np.asarray(m, dtype=float)
            n = np.zeros_like(m) if n is None else np.asarray(n, dtype=float)
            left, right = m - n, a - b
        ret = np.zeros(self._rows)
        for row, mat, ids in zip(self._row, self._row_mats, self._row_ids):
            ret[row] += left[ids] @ (mat @ right[ids])
        return ret


# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------
def _entities(mesh):
    """(entities, node count) of a Mesh or a sequence of entities."""
    if hasattr(mesh, "cells"):
        return list(mesh.cells()), mesh.node_count()
    ents = list(mesh)
    n_nodes = max((int(e.ids().max()) + 1 for e in ents if e.node_count()), default=0)
    return ents, n_nodes


def _run(fn: Callable[[int], None], n: int, what: str):
    """Apply ``fn`` to ``range(n)``; on a thread pool for large maps."""
    cfg = get_config()
    t0 = time.perf_counter()
    if cfg.threads > 1 and n >= cfg.parallel_threshold:
        with ThreadPoolExecutor(max_workers=cfg.threads) as pool:
            # list() propagates the first worker exception
            list(pool.map(fn, range(n)))
        mode = f"{cfg.threads} threads"
    else:
        for i in range(n):
            fn(i)
        mode = "sequential"
    logger.debug(f"{what}: {n} entities, {mode} ({time.perf_counter() - t0:.4f}s)")


def _constant_space(n_coeff: int, dof_offset: int, provider) -> ElementMatrixMap:
    ret = ElementMatrixMap(provider=provider)
    ret.resize(1)
    E = ret[0]
    E.init(n_coeff, 1, dof_offset)
    E.set_ids(np.arange(dof_offset, dof_offset + n_coeff), [0])
    E.set_mat(np.ones((n_coeff, 1)))
    ret.set_dofs(n_coeff, 1, dof_offset)
    return ret


def _build(ents: Sequence, ret: ElementMatrixMap, layout: Callable, fill: Callable, what: str):
    """
    Two-phase construction: ``layout`` binds entity ``i`` and allocates its
    images and ids, ``fill`` writes the images into that allocation. Each call
    touches only its own slot, so both phases may run on the thread pool.
    """
    _run(lambda i: layout(ret[i], ents[i]), len(ents), f"{what} layout")
    _run(lambda i: fill(ret[i]), len(ents), f"{what} images")


def create_value_map(mesh, order: int, n_coeff: int = 1, dof_offset: int = 0,
                     provider: Optional[QuadratureProvider] = None) -> ElementMatrixMap:
    """
    Integrated shape-function operators of every cell.

    A mesh without nodes yields the constant space: one entry of order 0
    with ids ``dof_offset .. dof_offset + n_coeff``.
    """
    ents, n_nodes = _entities(mesh)
    if n_nodes == 0:
        return _constant_space(n_coeff, dof_offset, provider)

    ret = ElementMatrixMap(provider=provider)
    ret.set_dofs(n_coeff, n_nodes, dof_offset)
    ret.resize(len(ents))

    def layout(E, ent):
        E.init(n_coeff, n_nodes, dof_offset)
        E.layout_pot(ent, order)

    _build(ents, ret, layout, lambda E: E.fill_pot().integrate(), "value map")
    return ret


def create_gradient_map(mesh, order: int, elastic: bool = False, div: bool = False,
                        kelvin: Optional[bool] = None, n_coeff: int = 1, dof_offset: int = 0,
                        provider: Optional[QuadratureProvider] = None) -> ElementMatrixMap:
    """Gradient (or reduced strain, with ``elastic``) operators of every cell."""
    if kelvin is None:
        kelvin = get_config().kelvin
    ents, n_nodes = _entities(mesh)
    ret = ElementMatrixMap(provider=provider)
    ret.set_dofs(n_coeff, n_nodes, dof_offset)
    ret.resize(len(ents))

    def layout(E, ent):
        E.init(n_coeff, n_nodes, dof_offset)
        E.layout_grad(ent, order, elastic=elastic, div=div, kelvin=kelvin)

    _build(ents, ret, layout, lambda E: E.fill_grad(), "gradient map")
    return ret


def create_identity_map(mesh, order: int, n_coeff: int = 1, dof_offset: int = 0,
                        provider: Optional[QuadratureProvider] = None) -> ElementMatrixMap:
    ents, n_nodes = _entities(mesh)
    ret = ElementMatrixMap(provider=provider)
    ret.set_dofs(n_coeff, n_nodes, dof_offset)
    ret.resize(len(ents))

    def layout(E, ent):
        E.layout_identity(ent, order, n_coeff, n_nodes, dof_offset)

    _build(ents, ret, layout, lambda E: E.fill_identity(), "identity map")
    return ret


create_u_map = create_value_map
create_du_map = create_gradient_map
