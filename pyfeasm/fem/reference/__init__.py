# pyfeasm.fem.reference
"""
Reference-element factory: nodal Lagrange bases on unit simplices and boxes.
"""
from functools import lru_cache
import numpy as np
import sympy as sp

from pyfeasm.fem.reference.lagrange import lagrange_basis

_h = sp.Rational(1, 2)

# kind -> (dim, reference nodes, monomial exponents)
_TABLES = {
    "edge": (1, ((0,), (1,)), ((0,), (1,))),
    "edge3": (1, ((0,), (1,), (_h,)), ((0,), (1,), (2,))),
    "tri": (2, ((0, 0), (1, 0), (0, 1)), ((0, 0), (1, 0), (0, 1))),
    "tri6": (2,
             ((0, 0), (1, 0), (0, 1), (_h, 0), (_h, _h), (0, _h)),
             ((0, 0), (1, 0), (0, 1), (2, 0), (1, 1), (0, 2))),
    "quad": (2, ((0, 0), (1, 0), (1, 1), (0, 1)),
             ((0, 0), (1, 0), (0, 1), (1, 1))),
    "quad8": (2,
              ((0, 0), (1, 0), (1, 1), (0, 1), (_h, 0), (1, _h), (_h, 1), (0, _h)),
              ((0, 0), (1, 0), (0, 1), (2, 0), (1, 1), (0, 2), (2, 1), (1, 2))),
    "tet": (3, ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)),
            ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1))),
    "tet10": (3,
              ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1),
               (_h, 0, 0), (_h, _h, 0), (0, _h, 0), (0, 0, _h), (_h, 0, _h), (0, _h, _h)),
              ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1), (2, 0, 0),
               (0, 2, 0), (0, 0, 2), (1, 1, 0), (1, 0, 1), (0, 1, 1))),
    "hex": (3,
            ((0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
             (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1)),
            ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1),
             (1, 1, 0), (1, 0, 1), (0, 1, 1), (1, 1, 1))),
    "hex20": (3,
              ((0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
               (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1),
               (_h, 0, 0), (1, _h, 0), (_h, 1, 0), (0, _h, 0),
               (_h, 0, 1), (1, _h, 1), (_h, 1, 1), (0, _h, 1),
               (0, 0, _h), (1, 0, _h), (1, 1, _h), (0, 1, _h)),
              ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1),
               (2, 0, 0), (0, 2, 0), (0, 0, 2), (1, 1, 0), (1, 0, 1), (0, 1, 1),
               (2, 1, 0), (2, 0, 1), (1, 2, 0), (0, 2, 1), (1, 0, 2), (0, 1, 2),
               (1, 1, 1), (2, 1, 1), (1, 2, 1), (1, 1, 2))),
    "prism": (3,
              ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1), (1, 0, 1), (0, 1, 1)),
              ((0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1), (1, 0, 1), (0, 1, 1))),
}

# reference measure of each kind (length/area/volume of the unit shape)
REFERENCE_MEASURE = {
    "node": 1.0, "edge": 1.0, "edge3": 1.0, "tri": 0.5, "tri6": 0.5,
    "quad": 1.0, "quad8": 1.0, "tet": 1.0 / 6.0, "tet10": 1.0 / 6.0,
    "hex": 1.0, "hex20": 1.0, "prism": 0.5,
}

# kind -> geometric (corner) kind used for the quadrature rule
BASE_KIND = {
    "node": "node", "edge": "edge", "edge3": "edge", "tri": "tri", "tri6": "tri",
    "quad": "quad", "quad8": "quad", "tet": "tet", "tet10": "tet",
    "hex": "hex", "hex20": "hex", "prism": "prism",
}

REFERENCE_CENTER = {
    "node": (), "edge": (0.5,), "tri": (1 / 3, 1 / 3), "quad": (0.5, 0.5),
    "tet": (0.25, 0.25, 0.25), "hex": (0.5, 0.5, 0.5), "prism": (1 / 3, 1 / 3, 0.5),
}


def _pad(point):
    p = tuple(float(v) for v in point)
    return p + (0.0,) * (3 - len(p))


class Ref:
    def __init__(self, kind, dim, nodes, shape_lambda, deriv_lambdas):
        self.kind = kind
        self.dim = dim
        self.nodes = np.array([[float(c) for c in n] for n in nodes], dtype=float).reshape(len(nodes), dim)
        self.n_nodes = len(nodes)
        self.shape_lambda = shape_lambda
        self.deriv_lambdas = deriv_lambdas

    @lru_cache(maxsize=None)
    def _shape(self, r, s, t):
        if self.dim == 0:
            return np.ones(1)
        vals = np.asarray(self.shape_lambda(r, s, t), dtype=float).ravel()
        return np.broadcast_to(vals, (self.n_nodes,)).copy()

    @lru_cache(maxsize=None)
    def _derivative(self, r, s, t, axis):
        vals = np.asarray(self.deriv_lambdas[axis](r, s, t), dtype=float).ravel()
        return np.broadcast_to(vals, (self.n_nodes,)).copy()

    def shape(self, point):
        """N_i at a reference point."""
        return self._shape(*_pad(point))

    def derivative(self, point, axis: int):
        """dN_i/dL_axis at a reference point."""
        if not 0 <= axis < self.dim:
            raise ValueError(f"Reference axis {axis} out of range for '{self.kind}' (dim={self.dim})")
        return self._derivative(*_pad(point), axis)

    def grad(self, point):
        """(dim, n_nodes) array of reference gradients."""
        if self.dim == 0:
            return np.zeros((0, 1))
        return np.vstack([self.derivative(point, a) for a in range(self.dim)])

    def center(self):
        return REFERENCE_CENTER[BASE_KIND[self.kind]]


@lru_cache(maxsize=None)
def get_reference(kind: str) -> Ref:
    if kind == "node":
        return Ref(kind, 0, [()], None, [])
    if kind not in _TABLES:
        raise KeyError(kind)
    dim, nodes, monomials = _TABLES[kind]
    nodes = tuple(tuple(sp.S(c) for c in n) for n in nodes)
    shape_l, deriv_lambdas = lagrange_basis(nodes, monomials, dim)
    return Ref(kind, dim, nodes, shape_l, deriv_lambdas)


def reference_dim(kind: str) -> int:
    if kind == "node":
        return 0
    if kind not in _TABLES:
        raise KeyError(kind)
    return _TABLES[kind][0]
