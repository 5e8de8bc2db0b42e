"""pyfeasm.assembly.element_matrix
Per-entity local operator: basis images at quadrature points plus the lazily
integrated dense matrix and its global row/column dof indices.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pyfeasm.assembly.layouts import gradient_layout, trace_rows
from pyfeasm.assembly.legacy import LegacyOperatorsMixin
from pyfeasm.config import get_config
from pyfeasm.errors import (ConfigurationError, SizeMismatch, Unimplemented,
                            UninitializedOperator)
from pyfeasm.integration.quadrature import QuadratureProvider, default_provider

logger = logging.getLogger(__name__)


def _frozen(a, dtype=float):
    a = np.array(a, dtype=dtype, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class IntegratedOperator:
    """Immutable result of integrating an :class:`ElementMatrix`."""
    mat: np.ndarray
    row_ids: np.ndarray
    col_ids: np.ndarray

    def rows(self):
        return self.mat.shape[0]

    def cols(self):
        return self.mat.shape[1]

    def __array__(self, dtype=None, copy=None):
        return np.array(self.mat, dtype=dtype)


class ElementMatrix(LegacyOperatorsMixin):
    """
    Builder for the local operator of one mesh entity.

    Basis images are stored as one array of shape ``(nq, n_out, n_dof)``:
    ``n_out`` operator output rows (values, gradient components, strain rows)
    over ``n_dof = nVerts * nCoeff`` local dofs. Integration accumulates the
    transposed images, so the integrated matrix is ``(n_dof, n_out)`` and lines
    up with ``row_ids`` / ``col_ids``.

    The entity and the quadrature rule are borrowed: the entity (and its mesh)
    must outlive the operator, and the rule is held as a handle into the
    :class:`~pyfeasm.integration.quadrature.QuadratureProvider`.
    """

    def __init__(self, n_coeff: int = 1, dof_per_coeff: int = 0, dof_offset: int = 0,
                 provider: Optional[QuadratureProvider] = None):
        self._provider = provider if provider is not None else default_provider()
        self.init(n_coeff, dof_per_coeff, dof_offset)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def init(self, n_coeff: int = 1, dof_per_coeff: int = 0, dof_offset: int = 0):
        """Reset to the uninitialized state with a new field layout."""
        if n_coeff > 1 and dof_per_coeff == 0:
            raise ConfigurationError(
                f"Number of coefficients > 1 (nCoeff={n_coeff}) but no dofPerCoeff given")
        self._n_coeff = int(n_coeff)
        self._dof_per_coeff = int(dof_per_coeff)
        self._dof_offset = int(dof_offset)
        self._order = 0
        self._ent = None
        self._handle = None
        self._basis = None
        self._mat_x = np.zeros((0, 0, 0))
        self._mat = np.zeros((0, 0))
        self._row_ids = np.zeros(0, dtype=np.int64)
        self._col_ids = np.zeros(0, dtype=np.int64)
        self._div = False
        self._elastic = False
        self._kelvin = False
        self._valid = False
        self._integrated = False
        self._result = None
        return self

    def _touch(self):
        self._integrated = False
        self._result = None

    def copy_from(self, other: "ElementMatrix", with_mat: bool = True):
        """Clone layout, rule, entity and images of ``other``."""
        self._provider = other._provider
        self._n_coeff = other._n_coeff
        self._dof_per_coeff = other._dof_per_coeff
        self._dof_offset = other._dof_offset
        self._order = other._order
        self._ent = other._ent
        self._handle = other._handle
        self._basis = other._basis
        self._mat_x = other._mat_x.copy()
        self._row_ids = other._row_ids.copy()
        self._col_ids = other._col_ids.copy()
        self._div = other._div
        self._elastic = other._elastic
        self._kelvin = other._kelvin
        self._valid = other._valid
        self._result = None
        if with_mat:
            self._mat = other._mat.copy()
            self._integrated = other._integrated
        else:
            self._mat = np.zeros_like(other._mat)
            self._integrated = False
        return self

    def copy(self) -> "ElementMatrix":
        return ElementMatrix(provider=self._provider).copy_from(self)

    def resize(self, rows: int, cols: int = 0, set_ids: bool = True):
        if cols == 0:
            cols = rows
        self._touch()
        self._row_ids = np.zeros(rows, dtype=np.int64)
        self._col_ids = np.arange(cols, dtype=np.int64)
        self._mat = np.zeros((rows, cols))
        if self._ent is not None and set_ids:
            self._fill_row_ids()

    def _fill_row_ids(self):
        ids = self._ent.ids()
        nv = len(ids)
        for i in range(self._n_coeff):
            self._row_ids[i * nv:(i + 1) * nv] = ids + i * self._dof_per_coeff + self._dof_offset

    def set_ids(self, row_ids, col_ids=None):
        row_ids = np.asarray(row_ids, dtype=np.int64)
        if col_ids is None:
            col_ids = np.arange(self._mat.shape[1], dtype=np.int64)
        col_ids = np.asarray(col_ids, dtype=np.int64)
        if self._mat.shape != (len(row_ids), len(col_ids)):
            self._mat = np.zeros((len(row_ids), len(col_ids)))
            self._integrated = False
        self._row_ids = row_ids.copy()
        self._col_ids = col_ids.copy()
        self._result = None

    def set_mat(self, mat):
        """Install an already integrated matrix (no basis images)."""
        mat = np.atleast_2d(np.asarray(mat, dtype=float))
        if mat.shape[0] != len(self._row_ids) or mat.shape[1] != len(self._col_ids):
            raise SizeMismatch(f"set_mat: matrix {mat.shape} does not match ids "
                               f"({len(self._row_ids)}, {len(self._col_ids)})")
        self._mat = mat.copy()
        self._integrated = True
        self._result = None

    def set_mat_x(self, images):
        """Replace the basis images; shape ``(nq, n_out, n_dof)``."""
        images = np.asarray(images, dtype=float)
        if images.ndim != 3:
            raise SizeMismatch(f"Basis images need 3 axes, got shape {images.shape}")
        if self._handle is not None and images.shape[0] != len(self.w):
            raise SizeMismatch(f"{images.shape[0]} images for a {len(self.w)}-point rule")
        if images.shape[2] != len(self._row_ids):
            raise SizeMismatch(f"Images with {images.shape[2]} columns for "
                               f"{len(self._row_ids)} row ids")
        self._mat_x = images
        self._mat = np.zeros((images.shape[2], images.shape[1]))
        if len(self._col_ids) != images.shape[1]:
            self._col_ids = np.arange(images.shape[1], dtype=np.int64)
        # no longer the reference images of any entity
        self._basis = None
        self._valid = True
        self._touch()

    def _fill_entity_and_order(self, ent, order: int):
        self._order = int(order)
        self._ent = ent
        self._handle = self._provider.handle(ent.rtti(), self._order)
        self._touch()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def provider(self):
        return self._provider

    @property
    def entity(self):
        return self._ent

    @property
    def order(self) -> int:
        return self._order

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
    def valid(self) -> bool:
        return self._valid

    @property
    def is_integrated(self) -> bool:
        return self._integrated

    @property
    def is_div(self) -> bool:
        return self._div

    @is_div.setter
    def is_div(self, flag: bool):
        self._div = bool(flag)

    @property
    def elastic(self) -> bool:
        return self._elastic

    @elastic.setter
    def elastic(self, flag: bool):
        self._elastic = bool(flag)

    @property
    def handle(self):
        return self._handle

    @property
    def w(self) -> np.ndarray:
        if self._handle is None:
            return np.zeros(0)
        return self._provider.rule(self._handle).weights

    @property
    def x(self) -> np.ndarray:
        if self._handle is None:
            return np.zeros((0, 0))
        return self._provider.rule(self._handle).points

    @property
    def mat_x(self) -> np.ndarray:
        return self._mat_x

    @property
    def row_ids(self) -> np.ndarray:
        return self._row_ids

    @property
    def col_ids(self) -> np.ndarray:
        return self._col_ids

    @property
    def mat(self) -> np.ndarray:
        return self.integrated_value().mat

    def rows(self) -> int:
        return self._mat.shape[0]

    def cols(self) -> int:
        return self._mat.shape[1]

    def n_rules(self) -> int:
        return len(self._mat_x)

    def measure(self) -> float:
        return self._ent.size() if self._ent is not None else 1.0

    def __repr__(self):
        ent = None if self._ent is None else self._ent.id
        return (f"ElementMatrix(entity={ent}, order={self._order}, nCoeff={self._n_coeff}, "
                f"shape={self._mat.shape}, valid={self._valid}, integrated={self._integrated})")

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------
    def integrate(self):
        """mat = sum_q X_q^T w_q |entity|; no-op when already integrated."""
        if self._integrated:
            return self
        if not self._valid:
            raise UninitializedOperator(
                f"integrate() on operator without basis images: {self!r}")
        w = self.w
        if len(w) != len(self._mat_x):
            raise SizeMismatch(f"{len(self._mat_x)} basis images for a {len(w)}-point rule")
        self._mat = np.einsum("qij,q->ji", self._mat_x, w) * self.measure()
        self._integrated = True
        self._result = None
        return self

    def integrated_value(self) -> IntegratedOperator:
        """Integrate if needed and return the cached immutable result."""
        self.integrate()
        if self._result is None:
            self._result = IntegratedOperator(_frozen(self._mat),
                                              _frozen(self._row_ids, np.int64),
                                              _frozen(self._col_ids, np.int64))
        return self._result

    # ------------------------------------------------------------------
    # Operator kinds
    # ------------------------------------------------------------------
    def _layout_changed(self, n_coeff, dof_per_coeff, dof_offset):
        return (n_coeff is not None and
                (n_coeff, dof_per_coeff, dof_offset) !=
                (self._n_coeff, self._dof_per_coeff, self._dof_offset))


    def _check_layout(self, what, expected):
        if self._ent is None or self._mat_x.shape != expected:
            raise UninitializedOperator(
                f"{what}: images {self._mat_x.shape} were not laid out for {expected}")

    def pot(self, ent, order: int, sum: bool = False, n_coeff: Optional[int] = None,
            dof_per_coeff: int = 0, dof_offset: int = 0):
        """Shape-function ("value") images, one row per field component."""
        if n_coeff is not None and (get_config().disable_cache
                                    or self._layout_changed(n_coeff, dof_per_coeff, dof_offset)):
            self.init(n_coeff, dof_per_coeff, dof_offset)

        if self._valid and self._basis == "pot" and self._order == order:
            if self._ent is ent:
                if sum:
                    self.integrate()
                return self
            if ent.rtti() == self._ent.rtti():
                # images depend on the reference shape only; re-point and renumber
                self._ent = ent
                self._touch()
                self._fill_row_ids()
                if sum:
                    self.integrate()
                return self

        self.layout_pot(ent, order).fill_pot()
        if sum:
            self.integrate()
        return self

    def layout_pot(self, ent, order: int):
        """Bind ``ent`` and allocate zeroed value images for :meth:`fill_pot`."""
        nc = self._n_coeff
        if nc == 0:
            raise ConfigurationError("ElementMatrix needs to be initialized (nCoeff == 0)")
        self._fill_entity_and_order(ent, order)
        nv = ent.node_count()
        self.resize(nv * nc, nc)
        self._mat_x = np.zeros((len(self.w), nc, nv * nc))
        self._basis = None
        self._div = False
        self._elastic = False
        self._valid = False
        return self

    def fill_pot(self):
        """Write the shape-function values into the images of :meth:`layout_pot`."""
        if self._ent is None:
            raise UninitializedOperator("fill_pot before layout_pot")
        N, _ = self._provider.tabulate(self._ent.rtti(), self._order)
        nq, nv = N.shape
        nc = self._n_coeff
        self._check_layout("fill_pot", (nq, nc, nv * nc))
        for n in range(nc):
            self._mat_x[:, n, n * nv:(n + 1) * nv] = N
        self._basis = "pot"
        self._valid = True
        self._touch()
        return self

    def _physical_gradients(self, ent, order):
        """(nq, dim, nv) shape-function derivatives d N / d x_k, k < dim."""
        _, dN = self._provider.tabulate(ent.rtti(), order)
        dim = dN.shape[1]
        inv = ent.shape().inv_jacobian()
        return np.einsum("ak,qan->qkn", inv[:dim, :dim], dN)

    def grad(self, ent, order: int, elastic: bool = False, sum: bool = False,
             div: bool = False, n_coeff: Optional[int] = None, dof_per_coeff: int = 0,
             dof_offset: int = 0, kelvin: Optional[bool] = None):
        """
        Physical gradient images.

        Scalar fields get ``dim`` rows. Vector fields get the flattened
        ``dim x dim`` Jacobian (row ``dim*i + j`` = d u_i / d x_j) or, with
        ``elastic``, the reduced symmetric-strain rows whose shear entries are
        scaled by 1 (Voigt) or 1/sqrt(2) (``kelvin``).
        """
        if kelvin is None:
            kelvin = get_config().kelvin
        if n_coeff is not None and (get_config().disable_cache
                                    or self._layout_changed(n_coeff, dof_per_coeff, dof_offset)):
            self.init(n_coeff, dof_per_coeff, dof_offset)

        if (self._valid and self._basis == "grad" and self._order == order
                and self._ent is ent and self._elastic == elastic
                and self._kelvin == bool(kelvin)):
            self._div = div
            if sum:
                self.integrate()
            return self

        self.layout_grad(ent, order, elastic=elastic, div=div, kelvin=kelvin).fill_grad()
        if sum:
            self.integrate()
        return self

    def layout_grad(self, ent, order: int, elastic: bool = False, div: bool = False,
                    kelvin: Optional[bool] = None):
        """Bind ``ent`` and allocate zeroed gradient images for :meth:`fill_grad`."""
        if kelvin is None:
            kelvin = get_config().kelvin
        nc = self._n_coeff
        if nc == 0:
            raise ConfigurationError("ElementMatrix needs to be initialized (nCoeff == 0)")
        self._fill_entity_and_order(ent, order)
        n_out, _ = gradient_layout(ent.dim(), nc, elastic)
        nv = ent.node_count()
        self.resize(nv * nc, n_out)
        self._mat_x = np.zeros((len(self.w), n_out, nv * nc))
        self._div = div
        self._elastic = elastic
        self._kelvin = bool(kelvin)
        self._basis = None
        self._valid = False
        return self

    def fill_grad(self):
        """Write physical gradients into the images of :meth:`layout_grad`."""
        ent = self._ent
        if ent is None:
            raise UninitializedOperator("fill_grad before layout_grad")
        nc = self._n_coeff
        nv = ent.node_count()
        n_out, table = gradient_layout(ent.dim(), nc, self._elastic)
        dNdx = self._physical_gradients(ent, self._order)
        self._check_layout("fill_grad", (dNdx.shape[0], n_out, nv * nc))
        a = 1.0 / np.sqrt(2.0) if self._kelvin else 1.0
        for row, comp, axis, shear in table:
            self._mat_x[:, row, comp * nv:(comp + 1) * nv] = dNdx[:, axis, :] * (a if shear else 1.0)
        self._basis = "grad"
        self._valid = True
        self._touch()
        return self

    def identity(self, ent, order: int, n_coeff: int = 1, dof_per_coeff: int = 0,
                 dof_offset: int = 0):
        """Constant ones on the diagonal strain rows; always rebuilt."""
        return self.layout_identity(ent, order, n_coeff, dof_per_coeff, dof_offset).fill_identity()

    def layout_identity(self, ent, order: int, n_coeff: int = 1, dof_per_coeff: int = 0,
                        dof_offset: int = 0):
        self.init(n_coeff, dof_per_coeff, dof_offset)
        dim = ent.dim()
        if self._n_coeff != dim:
            raise ConfigurationError(
                f"identity needs nCoeff == entity dim, got nCoeff={n_coeff}, dim={dim}")
        if dim not in (2, 3):
            raise Unimplemented(f"identity for entity dimension {dim}")
        self._fill_entity_and_order(ent, order)
        nv = ent.node_count()
        n_out = dim * self._n_coeff
        self.resize(nv * self._n_coeff, n_out)
        self._mat_x = np.zeros((len(self.w), n_out, nv * self._n_coeff))
        return self

    def fill_identity(self):
        if self._ent is None:
            raise UninitializedOperator("fill_identity before layout_identity")
        nc = self._n_coeff
        n_out = self._ent.dim() * nc
        self._check_layout("fill_identity", (len(self.w), n_out, self._ent.node_count() * nc))
        self._mat_x[:, list(trace_rows(n_out)), :] = 1.0
        self._basis = "identity"
        self._valid = True
        self._touch()
        return self

    # ------------------------------------------------------------------
    # In-place combination
    # ------------------------------------------------------------------
    def __imul__(self, f: float):
        self._mat_x = self._mat_x * f
        self._mat = self._mat * f
        self._basis = None
        self._result = None
        return self

    def __iadd__(self, other: "ElementMatrix"):
        has_x = len(self._mat_x) > 0 and self._valid
        other_x = len(other._mat_x) > 0 and other._valid
        if has_x and other_x:
            if self._mat_x.shape != other._mat_x.shape:
                raise Unimplemented(f"+= on basis images {self._mat_x.shape} "
                                    f"and {other._mat_x.shape}")
            self._mat_x = self._mat_x + other._mat_x
            self._basis = None
            self._touch()
        elif not has_x and not other_x:
            if self._mat.shape != other._mat.shape:
                raise SizeMismatch(f"+= on matrices {self._mat.shape} and {other._mat.shape}")
            self._mat = self._mat + other.mat
            self._result = None
        else:
            raise Unimplemented("+= between an operator with basis images and one without")
        return self

    def add(self, other: "ElementMatrix", dim: int = 0, scale: float = 1.0):
        """
        Merge ``other`` into this operator.

        Equal shapes add row by row; ``dim == 1`` collapses both operators to
        a single summed row (a divergence-like scalar); anything else widens
        the output rows to the larger operand and adds with row broadcasting.
        """
        self._touch()
        B = other._mat_x * scale if scale != 1.0 else other._mat_x
        if len(B) != len(self._mat_x):
            raise SizeMismatch(f"add: {len(self._mat_x)} vs {len(B)} quadrature points")
        if self._mat_x.shape[2] != B.shape[2]:
            raise SizeMismatch(f"add: local dof counts differ ({self._mat_x.shape[2]} vs {B.shape[2]})")
        self._basis = None

        if self.rows() == other.rows() and self.cols() == other.cols():
            self._mat_x = self._mat_x + B
            return self

        if dim == 1:
            X = self._mat_x.sum(axis=1, keepdims=True) + B.sum(axis=1, keepdims=True)
            self._mat_x = X
            self._mat = np.zeros((self.rows(), 1))
            self._col_ids = np.arange(1, dtype=np.int64)
            return self

        na, nb = self._mat_x.shape[1], B.shape[1]
        if na == nb:
            X = self._mat_x + B
        elif na == 1:
            X = np.repeat(self._mat_x, nb, axis=1) + B
        elif nb == 1:
            X = self._mat_x + B
        else:
            raise Unimplemented(f"add: cannot widen {na} output rows with {nb}")
        self._mat_x = X
        n_out = X.shape[1]
        self._mat = np.zeros((self.rows(), n_out))
        self._col_ids = np.arange(n_out, dtype=np.int64)
        return self

    def trace_x(self) -> np.ndarray:
        """(nq, n_dof) per-quadrature trace of an unreduced gradient."""
        rows = trace_rows(self._mat_x.shape[1])
        return self._mat_x[:, list(rows), :].sum(axis=1)

    def quadrature_points(self) -> np.ndarray:
        """Physical coordinates of the rule points on the current entity."""
        shape = self._ent.shape()
        return np.array([shape.xyz(p) for p in self.x])
