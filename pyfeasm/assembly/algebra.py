"""pyfeasm.assembly.algebra
Operator algebra on :class:`ElementMatrix` values.

Every function starts from a structural copy of its first operand and works
on the per-quadrature basis images, so chained calls (``mult`` then ``dot``)
integrate only once at the end. Results are written into ``out`` when given,
otherwise into a new operator.
"""
import logging
from typing import Optional

import numpy as np

from pyfeasm.assembly.coefficients import (CoeffKind, Coefficient, linear_factors,
                                           resolve, sample)
from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.assembly.field import FEAFunction
from pyfeasm.assembly.layouts import divergence_rows, sym_pairs, trace_rows
from pyfeasm.assembly.sparse import add_to_vector
from pyfeasm.errors import SizeMismatch, Unimplemented, UninitializedOperator

logger = logging.getLogger(__name__)

__all__ = ["dot", "mult", "mult_n", "add", "sym", "trace", "trace_x",
           "integrate_linear", "integrate_n", "integrate_bilinear"]


def _images(E: ElementMatrix) -> np.ndarray:
    if not E.valid or E.mat_x.ndim != 3 or len(E.mat_x) == 0:
        raise UninitializedOperator(f"Operator has no basis images: {E!r}")
    return E.mat_x


def _start(A: ElementMatrix, out: Optional[ElementMatrix]) -> ElementMatrix:
    C = out if out is not None else ElementMatrix(provider=A.provider)
    C.copy_from(A, with_mat=False)
    return C


# ----------------------------------------------------------------------
# dot
# ----------------------------------------------------------------------
def _div_rows(E: ElementMatrix, n_rows: int):
    dim = E.entity.dim()
    if E.elastic:
        return tuple(range(dim))
    if n_rows == dim * dim:
        return divergence_rows(dim)
    raise Unimplemented(f"Divergence of an operator with {n_rows} rows on a "
                        f"{dim}-dimensional entity")


def _collapse(E: ElementMatrix, X: np.ndarray) -> np.ndarray:
    """Sum the divergence rows (or every row) into a single row."""
    rows = _div_rows(E, X.shape[1]) if E.is_div else range(X.shape[1])
    return X[:, list(rows), :].sum(axis=1, keepdims=True)


def _elastic_2d_reduced(c: np.ndarray) -> np.ndarray:
    """3x3 plane part of a 6x6 elastic matrix: the normal block plus c[4, 4]."""
    ce = np.zeros((3, 3))
    ce[:2, :2] = c[:2, :2]
    ce[2, 2] = c[4, 4]
    return ce


def _dot_coefficient(c):
    if isinstance(c, Coefficient):
        if c.kind in (CoeffKind.SCALAR, CoeffKind.MATRIX):
            return c
        raise Unimplemented(f"dot with a {c.kind.value} coefficient")
    if isinstance(c, FEAFunction):
        raise Unimplemented("dot with a field coefficient")
    if np.ndim(c) == 0:
        return Coefficient.scalar(c)
    a = np.asarray(c, dtype=float)
    if a.ndim == 2:
        return Coefficient.matrix(a)
    raise Unimplemented(f"dot with a coefficient of shape {a.shape}")


def dot(A: ElementMatrix, B: ElementMatrix, c=1.0,
        out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """
    Contract two operators: ``C = sum_q A_q^T c B_q w_q |entity|``.

    A scalar ``c`` scales ``A_q^T B_q``. When ``A`` is divergence-marked, or
    has several rows while ``B`` has one, the rows of ``A`` are summed into
    one first; the same holds for ``B``. A matrix ``c`` must be shaped
    ``(A.cols(), B.cols())``; a 6x6 elastic matrix is reduced to the plane
    3x3 part on 2D elastic operators. The result's rows follow ``A.row_ids``
    and its columns ``B.row_ids``; it is returned integrated.
    """
    if A.order != B.order:
        raise SizeMismatch(f"dot needs the same integration order, got {A.order} and {B.order}")
    XA, XB = _images(A), _images(B)
    if len(XA) != len(XB):
        raise SizeMismatch(f"dot: {len(XA)} vs {len(XB)} quadrature points")
    coeff = _dot_coefficient(c)

    if coeff.kind is CoeffKind.SCALAR:
        na, nb = XA.shape[1], XB.shape[1]
        if A.is_div or (na > 1 and nb == 1):
            XA = _collapse(A, XA)
        if B.is_div or (nb > 1 and na == 1):
            XB = _collapse(B, XB)
        if XA.shape[1] != XB.shape[1]:
            raise SizeMismatch(f"dot: {XA.shape[1]} rows of A vs {XB.shape[1]} rows of B")
        images = coeff.value * np.einsum("qki,qkj->qji", XA, XB)
    else:
        cm = coeff.value
        if cm.shape != (XA.shape[1], XB.shape[1]):
            if (A.elastic and B.elastic and A.entity.dim() == 2
                    and cm.shape[1] == 6 and cm.shape[0] == 6):
                cm = _elastic_2d_reduced(cm)
            else:
                raise SizeMismatch(
                    f"Parameter matrix {cm.shape} needs to match operator shapes "
                    f"A:{(A.rows(), A.cols())} B:{(B.rows(), B.cols())}")
        images = np.einsum("qki,kl,qlj->qji", XA, cm, XB)

    C = _start(A, out)
    C.set_ids(A.row_ids, B.row_ids)
    C.set_mat_x(images)
    C.is_div = False
    C.elastic = False
    return C.integrate()


# ----------------------------------------------------------------------
# mult
# ----------------------------------------------------------------------
def mult(A: ElementMatrix, f, out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """
    Scale the basis images of ``A`` by a coefficient.

    Scalars, vectors and per-quadrature values scale image rows; matrices
    multiply each image from the left; ``(nq, n_dof)`` arrays scale local dof
    columns; fields are sampled per their eval order first. A 1-D array whose
    length equals ``A.cols()`` is a per-row scale even when it also matches
    the number of quadrature points.
    """
    X = _images(A)
    coeff = resolve(f, A, "mult")
    mode, s = sample(coeff, A)
    if mode == "rows":
        Y = X * s[:, :, None]
    elif mode == "cols":
        Y = X * s[:, None, :]
    else:
        Y = np.einsum("qmk,qkd->qmd", s, X)

    C = _start(A, out)
    C.set_mat_x(Y)
    if coeff.kind is not CoeffKind.QUAD_MATRIX:
        C.integrate()
    return C


def mult_n(A: ElementMatrix, b, out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """
    Scale local dof columns by per-node values ``b``.

    ``b`` may hold one value per local dof, per local node, per global dof
    (``n_coeff * dof_per_coeff``, picked by row id) or per global node
    (``dof_per_coeff``).
    """
    X = _images(A)
    b = np.asarray(b, dtype=float).reshape(-1)
    n_dof = X.shape[2]
    nc = max(A.n_coeff, 1)
    dpc = A.dof_per_coeff
    local = A.row_ids - A.dof_offset

    if len(b) == n_dof:
        s = b
    elif n_dof % nc == 0 and len(b) == n_dof // nc:
        s = b[np.arange(n_dof) % (n_dof // nc)]
    elif dpc and len(b) == nc * dpc:
        s = b[local]
    elif dpc and len(b) == dpc:
        s = b[local % dpc]
    else:
        raise Unimplemented(
            f"mult_n with {len(b)} values for {n_dof} local dofs "
            f"(nCoeff={A.n_coeff}, dofPerCoeff={dpc})")

    C = _start(A, out)
    C.set_mat_x(X * s[None, None, :])
    return C.integrate()


# ----------------------------------------------------------------------
# add, sym, trace
# ----------------------------------------------------------------------
def add(A: ElementMatrix, B: ElementMatrix, dim: int = 0, b: float = 1.0,
        out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """``A + b * B`` on the basis images; see :meth:`ElementMatrix.add`."""
    _images(A)
    _images(B)
    C = _start(A, out)
    return C.add(B, dim, b)


def sym(A: ElementMatrix, out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """Average transposed-position rows of an unreduced gradient."""
    X = _images(A)
    if A.elastic and X.shape[1] > 1:
        raise Unimplemented("sym on a reduced elastic layout")
    Y = X.copy()
    for i, j in sym_pairs(X.shape[1]):
        avg = 0.5 * (X[:, i, :] + X[:, j, :])
        Y[:, i, :] = avg
        Y[:, j, :] = avg
    C = _start(A, out)
    C.set_mat_x(Y)
    return C


def trace(A: ElementMatrix, out: Optional[ElementMatrix] = None) -> ElementMatrix:
    """Write the summed diagonal rows back to each diagonal row, zero the rest."""
    X = _images(A)
    n_rows = X.shape[1]
    rows = list(trace_rows(n_rows))
    if n_rows == 1:
        Y = X.copy()
    else:
        Y = np.zeros_like(X)
        Y[:, rows, :] = X[:, rows, :].sum(axis=1, keepdims=True)
    C = _start(A, out)
    C.set_mat_x(Y)
    return C


def trace_x(A: ElementMatrix) -> np.ndarray:
    _images(A)
    return A.trace_x()


# ----------------------------------------------------------------------
# Linear and bilinear forms
# ----------------------------------------------------------------------
def _linear_rows(E: ElementMatrix) -> np.ndarray:
    """Image rows that carry the field components of a linear form."""
    n_out = E.mat_x.shape[1]
    nc = E.n_coeff
    step, max_rows = 1, n_out
    if nc == 2 and n_out == 4:
        step = 3
    elif nc == 2 and n_out == 3:
        max_rows = E.entity.dim()  # elastic
    elif nc == 3 and n_out == 9:
        step = 4
    elif nc == 3 and n_out == 6:
        max_rows = E.entity.dim()  # elastic
    return np.arange(0, max_rows, step)


def _target(R, E):
    if R is None:
        return np.zeros(int(E.row_ids.max()) + 1 if len(E.row_ids) else 0)
    return R


def integrate_linear(E: ElementMatrix, f, R: Optional[np.ndarray] = None,
                     scale: float = 1.0) -> np.ndarray:
    """
    Add ``scale * integral(E f)`` to the global vector ``R``.

    Scalars use the integrated matrix. Vectors, per-quadrature scalars,
    vectors and matrices are summed over the component rows of the images:
    ``sum_q sum_k X_q[k] w_q f(q, k) |entity|``.
    """
    coeff = resolve(f, E, "linear")
    R = _target(R, E)
    if coeff.kind is CoeffKind.SCALAR:
        E.integrate()
        return add_to_vector(R, E, coeff.value * scale)
    if coeff.kind in (CoeffKind.MATRIX, CoeffKind.FIELD, CoeffKind.QUAD_DOF):
        raise Unimplemented(f"Linear form with a {coeff.kind.value} coefficient")

    X = _images(E)
    rows = _linear_rows(E)
    F = linear_factors(coeff, E, rows)
    rt = np.einsum("qkd,q,qk->d", X[:, rows, :], E.w, F) * E.measure() * scale
    if len(E.row_ids) and E.row_ids.max() >= len(R):
        raise SizeMismatch(f"Row id {E.row_ids.max()} outside a vector of length {len(R)}")
    np.add.at(R, E.row_ids, rt)
    return R


def integrate_n(E: ElementMatrix, f, R: Optional[np.ndarray] = None,
                scale: float = 1.0) -> np.ndarray:
    """Linear form with one scalar per global node (``dof_per_coeff`` values)."""
    f = np.asarray(f, dtype=float).reshape(-1)
    if E.dof_per_coeff == 0 or len(f) != E.dof_per_coeff:
        raise SizeMismatch(f"integrate_n: {len(f)} node values, dofPerCoeff={E.dof_per_coeff}")
    R = _target(R, E)
    res = E.integrated_value()
    nodes = (res.row_ids - E.dof_offset) % E.dof_per_coeff
    vals = res.mat.sum(axis=1) * f[nodes] * scale
    if len(res.row_ids) and res.row_ids.max() >= len(R):
        raise SizeMismatch(f"Row id {res.row_ids.max()} outside a vector of length {len(R)}")
    np.add.at(R, res.row_ids, vals)
    return R


def integrate_bilinear(A: ElementMatrix, B: ElementMatrix, f, S, scale: float = 1.0):
    """
    Scatter ``scale * dot(A, B, f)`` into the sparse target ``S``.

    Constant scalars and matrices go straight to :func:`dot`; per-quadrature
    scalars and matrices scale ``A`` first; an explicit constant vector
    (:meth:`Coefficient.vector`) scales ``B`` first.
    """
    if isinstance(f, FEAFunction):
        raise Unimplemented("Bilinear form with a field coefficient")
    if isinstance(f, Coefficient):
        kind = f.kind
    elif np.ndim(f) == 0:
        kind = CoeffKind.SCALAR
    elif np.ndim(f) == 2:
        kind = CoeffKind.MATRIX
    else:
        kind = None  # raw per-quadrature values, classified by mult

    if kind in (CoeffKind.SCALAR, CoeffKind.MATRIX):
        C = dot(A, B, f)
    elif kind is CoeffKind.VECTOR:
        C = dot(A, mult(B, f), 1.0)
    elif kind in (None, CoeffKind.QUAD_SCALAR, CoeffKind.QUAD_MATRIX):
        C = dot(mult(A, f), B, 1.0)
    else:
        raise Unimplemented(f"Bilinear form with a {kind.value} coefficient")
    S.add(C, scale=scale)
    return C
