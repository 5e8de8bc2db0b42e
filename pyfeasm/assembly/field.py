"""pyfeasm.assembly.field
Coefficient fields given as callbacks of a physical point and the owning entity.
"""
import logging
from typing import Callable, Optional

import numpy as np

from pyfeasm.errors import Unimplemented
from pyfeasm.integration.quadrature import default_provider

logger = logging.getLogger(__name__)

# where the algebra samples a field
EVAL_CENTER = 0
EVAL_NODES = 1
EVAL_QUADRATURE = 2


class FEAFunction:
    """
    Base class for a coefficient field.

    ``value_size`` selects the callback used by the algebra: 1 calls
    :meth:`eval_r1` (scalar), 3 calls :meth:`eval_r3` (vector), anything else
    calls :meth:`eval_rm` (small matrix). ``eval_order`` is the sampling
    granularity: cell center, nodes (not supported) or quadrature points.
    """

    def __init__(self, value_size: int = 1, eval_order: int = EVAL_QUADRATURE):
        self._value_size = int(value_size)
        self._eval_order = int(eval_order)

    @property
    def value_size(self) -> int:
        return self._value_size

    @property
    def eval_order(self) -> int:
        return self._eval_order

    def _missing(self, name):
        logger.warning(f"{type(self).__name__}.{name} is not overridden")
        raise Unimplemented(f"{type(self).__name__} does not implement {name}")

    def eval_r1(self, pos, ent=None) -> float:
        self._missing("eval_r1")

    def eval_r3(self, pos, ent=None) -> np.ndarray:
        self._missing("eval_r3")

    def eval_rm(self, pos, ent=None) -> np.ndarray:
        self._missing("eval_rm")

    def evaluate(self, pos, ent=None):
        if self._value_size == 1:
            return float(self.eval_r1(pos, ent))
        if self._value_size == 3:
            return np.asarray(self.eval_r3(pos, ent), dtype=float).reshape(-1)
        return np.atleast_2d(np.asarray(self.eval_rm(pos, ent), dtype=float))

    def __call__(self, pos, ent=None):
        return self.evaluate(pos, ent)

    def __repr__(self):
        return (f"{type(self).__name__}(value_size={self._value_size}, "
                f"eval_order={self._eval_order})")


class CallableFunction(FEAFunction):
    """Wrap a plain ``fn(pos, ent)`` callable."""

    def __init__(self, fn: Callable, value_size: int = 1,
                 eval_order: int = EVAL_QUADRATURE):
        super().__init__(value_size, eval_order)
        self._fn = fn

    def eval_r1(self, pos, ent=None):
        return self._fn(pos, ent)

    def eval_r3(self, pos, ent=None):
        return self._fn(pos, ent)

    def eval_rm(self, pos, ent=None):
        return self._fn(pos, ent)


def evaluate_quadrature_points(ent, x, f: FEAFunction) -> np.ndarray:
    """
    Sample ``f`` at the physical images of the reference points ``x``.

    Returns ``(nq,)`` for scalar fields, ``(nq, 3)`` for vector fields and
    ``(nq, m, n)`` for matrix fields.
    """
    shape = ent.shape()
    return np.array([f.evaluate(shape.xyz(p), ent) for p in x])


def evaluate_mesh_quadrature_points(mesh, order: int, f: FEAFunction,
                                    provider: Optional[object] = None):
    """Per-cell list of :func:`evaluate_quadrature_points` results."""
    if provider is None:
        provider = default_provider()
    return [evaluate_quadrature_points(c, provider.abscissa(c.rtti(), order), f)
            for c in mesh.cells()]
