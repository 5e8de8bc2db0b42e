"""pyfeasm.assembly.coefficients
Coefficient values for the operator algebra as one tagged type.

A raw argument (float, array, list of arrays, :class:`FEAFunction`) is
classified once by :func:`resolve`; the algebra then asks for per-quadrature
samples and never branches on Python types again.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Tuple

import numpy as np

from pyfeasm.assembly.field import (EVAL_CENTER, EVAL_NODES, EVAL_QUADRATURE,
                                    FEAFunction, evaluate_quadrature_points)
from pyfeasm.errors import (ConfigurationError, SizeMismatch, Unimplemented,
                            UninitializedOperator)

logger = logging.getLogger(__name__)


class CoeffKind(enum.Enum):
    SCALAR = "scalar"              # one number
    VECTOR = "vector"              # one number per output row
    MATRIX = "matrix"              # constant matrix applied from the left
    QUAD_SCALAR = "quad_scalar"    # (nq,)
    QUAD_VECTOR = "quad_vector"    # (nq, >= n_out)
    QUAD_MATRIX = "quad_matrix"    # (nq, m, n_out)
    QUAD_DOF = "quad_dof"          # (nq, n_dof), scales local dof columns
    FIELD = "field"                # FEAFunction, sampled on demand


PER_QUADRATURE = frozenset({CoeffKind.QUAD_SCALAR, CoeffKind.QUAD_VECTOR,
                            CoeffKind.QUAD_MATRIX, CoeffKind.QUAD_DOF})


@dataclass(frozen=True)
class Coefficient:
    kind: CoeffKind
    value: Any

    @classmethod
    def scalar(cls, v):
        return cls(CoeffKind.SCALAR, float(v))

    @classmethod
    def vector(cls, v):
        return cls(CoeffKind.VECTOR, np.asarray(v, dtype=float).reshape(-1))

    @classmethod
    def matrix(cls, m):
        return cls(CoeffKind.MATRIX, np.atleast_2d(np.asarray(m, dtype=float)))

    @classmethod
    def per_quadrature(cls, v):
        """Per-quadrature scalars, vectors or matrices, by number of axes."""
        a = np.asarray(v, dtype=float)
        kinds = {1: CoeffKind.QUAD_SCALAR, 2: CoeffKind.QUAD_VECTOR, 3: CoeffKind.QUAD_MATRIX}
        if a.ndim not in kinds:
            raise SizeMismatch(f"Per-quadrature coefficient with shape {a.shape}")
        return cls(kinds[a.ndim], a)

    @classmethod
    def per_quadrature_dof(cls, v):
        return cls(CoeffKind.QUAD_DOF, np.atleast_2d(np.asarray(v, dtype=float)))

    @classmethod
    def field(cls, f: FEAFunction):
        return cls(CoeffKind.FIELD, f)

    @property
    def is_per_quadrature(self) -> bool:
        return self.kind in PER_QUADRATURE


def _operator_sizes(E) -> Tuple[int, int, int]:
    """(nq, n_out, n_dof) of the operator's basis images."""
    if not E.valid:
        raise UninitializedOperator(f"Coefficient sampling on {E!r}")
    nq, n_out, n_dof = E.mat_x.shape
    return nq, n_out, n_dof


def _is_matrix_list(f) -> bool:
    return (isinstance(f, (list, tuple)) and len(f) > 0
            and all(isinstance(m, np.ndarray) and m.ndim == 2 for m in f))


def _is_vector_list(f) -> bool:
    return (isinstance(f, (list, tuple)) and len(f) > 0
            and all(isinstance(v, np.ndarray) and v.ndim == 1 for v in f))


def resolve(f, E, context: str = "mult") -> Coefficient:
    """
    Classify a raw coefficient against the operator ``E``.

    ``context="mult"`` applies the scaling overload order: a 1-D array whose
    length equals the operator's column count is a per-output-row scale, and
    only otherwise a per-quadrature scalar. ``context="linear"`` (linear-form
    integration) checks the per-quadrature reading first.
    """
    if isinstance(f, Coefficient):
        return f
    if isinstance(f, FEAFunction):
        return Coefficient.field(f)
    if np.ndim(f) == 0 and not isinstance(f, (list, tuple)):
        return Coefficient.scalar(f)
    if _is_matrix_list(f):
        return Coefficient(CoeffKind.QUAD_MATRIX, np.asarray(f, dtype=float))
    if _is_vector_list(f):
        return Coefficient(CoeffKind.QUAD_VECTOR, np.asarray(f, dtype=float))

    a = np.asarray(f, dtype=float)
    nq, n_out, n_dof = _operator_sizes(E)

    if a.ndim == 1:
        if context == "linear":
            if len(a) == nq:
                return Coefficient(CoeffKind.QUAD_SCALAR, a)
            return Coefficient(CoeffKind.VECTOR, a)
        if len(a) == n_out:
            logger.debug(f"length-{len(a)} coefficient read as per-row scale "
                         f"(operator has {n_out} columns, {nq} points)")
            return Coefficient(CoeffKind.VECTOR, a)
        if len(a) == nq:
            return Coefficient(CoeffKind.QUAD_SCALAR, a)
        raise SizeMismatch(f"Coefficient of length {len(a)} fits neither the "
                           f"{n_out} operator columns nor the {nq} quadrature points")

    if a.ndim == 2:
        if context == "linear":
            if len(a) == nq:
                return Coefficient(CoeffKind.QUAD_VECTOR, a)
            raise Unimplemented(f"Linear form with a constant {a.shape} matrix")
        if a.size == n_out:
            raise Unimplemented(f"mult by a {a.shape} matrix whose size equals the "
                                f"column count {n_out}")
        if a.shape == (nq, n_dof):
            return Coefficient(CoeffKind.QUAD_DOF, a)
        if a.shape == (n_out, n_out):
            return Coefficient(CoeffKind.MATRIX, a)
        if a.shape[0] == nq:
            return Coefficient(CoeffKind.QUAD_VECTOR, a)
        return Coefficient(CoeffKind.MATRIX, a)

    if a.ndim == 3:
        return Coefficient(CoeffKind.QUAD_MATRIX, a)
    raise SizeMismatch(f"Coefficient with shape {a.shape}")


def evaluate_field(f: FEAFunction, E) -> Coefficient:
    """Sample a field on the operator's entity according to its eval order."""
    ent = E.entity
    if ent is None:
        raise UninitializedOperator("Field coefficient on an operator without entity")
    order = f.eval_order
    if order == EVAL_CENTER:
        v = f.evaluate(ent.center(), ent)
        if f.value_size == 1:
            return Coefficient.scalar(v)
        if f.value_size == 3:
            return Coefficient.vector(v)
        return Coefficient.matrix(v)
    if order == EVAL_NODES:
        raise Unimplemented("Field evaluation at nodes")
    if order == EVAL_QUADRATURE:
        v = evaluate_quadrature_points(ent, E.x, f)
        if f.value_size == 1:
            return Coefficient(CoeffKind.QUAD_SCALAR, v)
        if f.value_size == 3:
            return Coefficient(CoeffKind.QUAD_VECTOR, v)
        return Coefficient(CoeffKind.QUAD_MATRIX, v)
    raise ConfigurationError(f"Eval order {order} is not defined")


def _check_rows(a, n, what):
    if a.shape[-1] < n:
        raise SizeMismatch(f"{what}: {a.shape[-1]} values for {n} operator rows")


def sample(coeff: Coefficient, E):
    """
    Per-quadrature samples of ``coeff`` for scaling the images of ``E``.

    Returns ``(mode, array)``: ``"rows"`` with ``(nq, n_out)`` row factors,
    ``"matrix"`` with ``(nq, m, n_out)`` left factors, or ``"cols"`` with
    ``(nq, n_dof)`` column factors.
    """
    if coeff.kind is CoeffKind.FIELD:
        coeff = evaluate_field(coeff.value, E)
    nq, n_out, n_dof = _operator_sizes(E)
    kind, v = coeff.kind, coeff.value

    if kind is CoeffKind.SCALAR:
        return "rows", np.full((nq, n_out), v)
    if kind is CoeffKind.VECTOR:
        _check_rows(v, n_out, "vector coefficient")
        return "rows", np.broadcast_to(v[:n_out], (nq, n_out))
    if kind is CoeffKind.QUAD_SCALAR:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature values for a {nq}-point rule")
        return "rows", np.repeat(v[:, None], n_out, axis=1)
    if kind is CoeffKind.QUAD_VECTOR:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature vectors for a {nq}-point rule")
        _check_rows(v, n_out, "per-quadrature vector")
        return "rows", v[:, :n_out]
    if kind is CoeffKind.QUAD_DOF:
        if v.shape != (nq, n_dof):
            raise SizeMismatch(f"Column factors {v.shape}, expected {(nq, n_dof)}")
        return "cols", v
    if kind is CoeffKind.MATRIX:
        if v.shape != (n_out, n_out):
            raise SizeMismatch(f"Parameter matrix {v.shape} needs to match the "
                               f"{n_out} image rows")
        return "matrix", np.broadcast_to(v, (nq,) + v.shape)
    if kind is CoeffKind.QUAD_MATRIX:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature matrices for a {nq}-point rule")
        if v.shape[2] != n_out:
            raise SizeMismatch(f"Per-quadrature matrices {v.shape[1:]} for "
                               f"{n_out} image rows")
        return "matrix", v
    raise Unimplemented(f"Sampling of {kind.value} coefficients")


def linear_factors(coeff: Coefficient, E, rows) -> np.ndarray:
    """``(nq, len(rows))`` factors ``f(q, k)`` of a linear-form integral."""
    nq, _, _ = _operator_sizes(E)
    kind, v = coeff.kind, coeff.value
    rows = np.asarray(rows, dtype=np.int64)
    need = int(rows.max()) + 1 if len(rows) else 0

    if kind is CoeffKind.VECTOR:
        _check_rows(v, need, "vector coefficient")
        return np.broadcast_to(v[rows], (nq, len(rows)))
    if kind is CoeffKind.QUAD_SCALAR:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature values for a {nq}-point rule")
        return np.repeat(v[:, None], len(rows), axis=1)
    if kind is CoeffKind.QUAD_VECTOR:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature vectors for a {nq}-point rule")
        _check_rows(v, need, "per-quadrature vector")
        return v[:, rows]
    if kind is CoeffKind.QUAD_MATRIX:
        if len(v) != nq:
            raise SizeMismatch(f"{len(v)} quadrature matrices for a {nq}-point rule")
        if v.shape[1] < need:
            raise SizeMismatch(f"Per-quadrature matrices {v.shape[1:]} for {need} rows")
        return v[:, rows, :].sum(axis=2)
    raise Unimplemented(f"Linear form with a {kind.value} coefficient")


def is_constant(f) -> bool:
    """True for coefficients that are the same on every entity."""
    if isinstance(f, (Coefficient, FEAFunction)):
        return True
    return np.ndim(f) == 0 and not isinstance(f, (list, tuple))


def is_per_entity(f, n: int, matrix_is_constant: bool = True) -> bool:
    """
    True when ``f`` holds one coefficient per entity of an ``n``-entity batch.

    Lists and tuples of length ``n`` always are; arrays are when their first
    axis has length ``n``, except 2-D arrays which count as one constant matrix
    unless ``matrix_is_constant`` is off. Wrap a constant vector in
    :meth:`Coefficient.vector` to keep it from being read per entity.
    """
    if is_constant(f):
        return False
    if isinstance(f, (list, tuple)):
        return len(f) == n
    a = np.asarray(f)
    if a.ndim == 2 and matrix_is_constant:
        return False
    return len(a) == n
