"""pyfeasm.integration.quadrature
Quadrature rules on the unit reference shapes and the rule registry that the
element builders draw from.

Weights are normalized to sum to one on every shape; an integral over a
physical entity is ``sum(w_q * f(x_q)) * entity.size()``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, Hashable, List, Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss

from pyfeasm.fem.reference import BASE_KIND, get_reference

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# 1-D Gauss-Legendre
# -------------------------------------------------------------------------
def gauss_legendre(n_points: int):
    if n_points < 1:
        raise ValueError(n_points)
    return leggauss(n_points)  # (points, weights) on [-1, 1]


def _gl01(n_points: int):
    """Gauss-Legendre nodes and weights mapped to [0,1]."""
    xi, w = gauss_legendre(int(n_points))
    return 0.5 * (xi + 1.0), 0.5 * w


def _n_points(order: int) -> int:
    # n Gauss points integrate degree 2n-1 exactly
    return max(int(order), 1) // 2 + 1


def _normalized(pts, wts):
    pts = np.ascontiguousarray(pts, dtype=float)
    wts = np.asarray(wts, dtype=float)
    return pts, wts / wts.sum()


# -------------------------------------------------------------------------
# Shape rules (all on the unit reference shapes)
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def line_rule(order: int):
    x, w = _gl01(_n_points(order))
    return _normalized(x[:, None], w)


@lru_cache(maxsize=None)
def quad_rule(order: int):
    x, w = _gl01(_n_points(order))
    pts = np.array([[a, b] for b in x for a in x])
    wts = np.array([wa * wb for wb in w for wa in w])
    return _normalized(pts, wts)


@lru_cache(maxsize=None)
def hex_rule(order: int):
    x, w = _gl01(_n_points(order))
    pts = np.array([[a, b, c] for c in x for b in x for a in x])
    wts = np.array([wa * wb * wc for wc in w for wb in w for wa in w])
    return _normalized(pts, wts)


def _collapsed_tri(order: int):
    # square -> triangle: r = u, s = v (1 - u); Jacobian (1 - u) raises the degree by one
    u, wu = _gl01(_n_points(order + 1))
    v, wv = _gl01(_n_points(order))
    pts, wts = [], []
    for i, ui in enumerate(u):
        for j, vj in enumerate(v):
            pts.append([ui, vj * (1.0 - ui)])
            wts.append(wu[i] * wv[j] * (1.0 - ui))
    return np.array(pts), np.array(wts)


@lru_cache(maxsize=None)
def tri_rule(order: int):
    """Degree-exact rule on the triangle (0,0)-(1,0)-(0,1)."""
    order = max(int(order), 1)
    if order == 1:
        return _normalized([[1 / 3, 1 / 3]], [1.0])
    if order == 2:
        pts = [[1 / 6, 1 / 6], [2 / 3, 1 / 6], [1 / 6, 2 / 3]]
        return _normalized(pts, [1.0, 1.0, 1.0])
    if order <= 5:
        sq = np.sqrt(15.0)
        a, b = (6.0 - sq) / 21.0, (6.0 + sq) / 21.0
        wa, wb = (155.0 - sq) / 1200.0, (155.0 + sq) / 1200.0
        pts = [[1 / 3, 1 / 3],
               [a, a], [1 - 2 * a, a], [a, 1 - 2 * a],
               [b, b], [1 - 2 * b, b], [b, 1 - 2 * b]]
        wts = [9 / 40, wa, wa, wa, wb, wb, wb]
        return _normalized(pts, wts)
    return _normalized(*_collapsed_tri(order))


@lru_cache(maxsize=None)
def tet_rule(order: int):
    """Degree-exact rule on the unit tetrahedron."""
    order = max(int(order), 1)
    if order == 1:
        return _normalized([[0.25, 0.25, 0.25]], [1.0])
    if order == 2:
        a = (5.0 - np.sqrt(5.0)) / 20.0
        b = (5.0 + 3.0 * np.sqrt(5.0)) / 20.0
        pts = [[a, a, a], [b, a, a], [a, b, a], [a, a, b]]
        return _normalized(pts, [1.0] * 4)
    # collapsed: r = u, s = v (1-u), t = z (1-u)(1-v); Jacobian (1-u)^2 (1-v)
    u, wu = _gl01(_n_points(order + 2))
    v, wv = _gl01(_n_points(order + 1))
    z, wz = _gl01(_n_points(order))
    pts, wts = [], []
    for i, ui in enumerate(u):
        for j, vj in enumerate(v):
            for k, zk in enumerate(z):
                pts.append([ui, vj * (1.0 - ui), zk * (1.0 - ui) * (1.0 - vj)])
                wts.append(wu[i] * wv[j] * wz[k] * (1.0 - ui) ** 2 * (1.0 - vj))
    return _normalized(pts, wts)


@lru_cache(maxsize=None)
def prism_rule(order: int):
    tp, tw = tri_rule(order)
    lp, lw = line_rule(order)
    pts = np.array([[p[0], p[1], z[0]] for z in lp for p in tp])
    wts = np.array([a * b for b in lw for a in tw])
    return _normalized(pts, wts)


def node_rule(order: int = 0):
    return np.zeros((1, 0)), np.ones(1)


_RULES = {
    "node": node_rule, "edge": line_rule, "tri": tri_rule, "quad": quad_rule,
    "tet": tet_rule, "hex": hex_rule, "prism": prism_rule,
}


def volume(kind: str, order: int = 2):
    """(points, weights) for the reference shape of ``kind``."""
    base = BASE_KIND.get(kind)
    if base is None:
        raise KeyError(kind)
    return _RULES[base](order)


# -------------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------------
RuleHandle = int


@dataclass(frozen=True)
class QuadratureRule:
    kind: str
    order: int
    points: np.ndarray
    weights: np.ndarray

    def __len__(self):
        return len(self.weights)


class QuadratureProvider:
    """
    Owns every quadrature table handed out to element builders.

    Rules are addressed through integer handles so builders hold an index
    into this registry rather than the arrays themselves. Entries are
    immutable once created; only the miss path takes the lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._rules: List[QuadratureRule] = []
        self._handles: Dict[Tuple[str, int], RuleHandle] = {}
        self._tabulated: Dict[Tuple[str, int], Tuple[np.ndarray, np.ndarray]] = {}
        self._derived: Dict[Hashable, object] = {}

    def handle(self, kind: str, order: int) -> RuleHandle:
        key = (kind, int(order))
        h = self._handles.get(key)
        if h is not None:
            return h
        with self._lock:
            h = self._handles.get(key)
            if h is None:
                pts, wts = volume(kind, order)
                pts.setflags(write=False)
                wts.setflags(write=False)
                self._rules.append(QuadratureRule(kind, int(order), pts, wts))
                h = len(self._rules) - 1
                self._handles[key] = h
                logger.debug(f"quadrature miss: {kind} order {order} -> handle {h} ({len(wts)} pts)")
        return h

    def rule(self, handle: RuleHandle) -> QuadratureRule:
        try:
            return self._rules[handle]
        except IndexError:
            raise KeyError(f"Unknown quadrature handle {handle}") from None

    def weights(self, kind: str, order: int) -> np.ndarray:
        return self.rule(self.handle(kind, order)).weights

    def abscissa(self, kind: str, order: int) -> np.ndarray:
        return self.rule(self.handle(kind, order)).points

    def tabulate(self, kind: str, order: int):
        """Shape values (nq, nv) and reference gradients (nq, dim, nv) at the rule points."""
        key = (kind, int(order))
        tab = self._tabulated.get(key)
        if tab is not None:
            return tab
        pts = self.abscissa(kind, order)
        ref = get_reference(kind)
        N = np.array([ref.shape(p) for p in pts])
        dN = np.array([ref.grad(p) for p in pts])
        N.setflags(write=False)
        dN.setflags(write=False)
        with self._lock:
            tab = self._tabulated.setdefault(key, (N, dN))
        return tab

    def cached(self, key: Hashable, factory: Callable[[], object]):
        """Derived per-(kind, order) data computed once; ``factory`` runs under the lock."""
        try:
            return self._derived[key]
        except KeyError:
            pass
        with self._lock:
            if key not in self._derived:
                value = factory()
                if isinstance(value, np.ndarray):
                    value.setflags(write=False)
                self._derived[key] = value
                logger.debug(f"derived cache miss: {key}")
            return self._derived[key]


_default_provider = QuadratureProvider()


def default_provider() -> QuadratureProvider:
    return _default_provider
