"""pyfeasm.assembly.legacy
Fixed-shape entry points kept for older callers: mass/load/Laplace/gradient
matrices with the quadrature order picked per entity kind.
"""
import numpy as np

from pyfeasm.assembly.layouts import ELASTIC_ROWS, gradient_layout
from pyfeasm.errors import ConfigurationError, SizeMismatch, Unimplemented, assert_shape

# polynomial degree integrated exactly, per entity kind
LEGACY_ORDER = {
    "node": 0,
    "edge": 2, "edge3": 4,
    "tri": 2, "tri6": 4,
    "quad": 2, "quad8": 4,
    "tet": 2, "tet10": 4,
    "hex": 2, "hex20": 4,
    "prism": 2,
}


def legacy_order(kind: str) -> int:
    try:
        return LEGACY_ORDER[kind]
    except KeyError:
        raise Unimplemented(f"No legacy quadrature order for '{kind}'") from None


def _u_integral(provider, kind, order):
    N, _ = provider.tabulate(kind, order)
    return provider.weights(kind, order) @ N


def _u2_integral(provider, kind, order):
    N, _ = provider.tabulate(kind, order)
    w = provider.weights(kind, order)
    return np.einsum("q,qi,qj->ij", w, N, N)


class LegacyOperatorsMixin:
    """Old-style operators; each writes an integrated matrix directly."""

    def _set_legacy(self, ent, order, mat, row_ids, col_ids):
        self._ent = ent
        self._order = int(order)
        self._handle = self._provider.handle(ent.rtti(), self._order)
        self._basis = None
        self._mat_x = np.zeros((0, 0, 0))
        self._valid = False
        self._div = False
        self._elastic = False
        self._row_ids = np.asarray(row_ids, dtype=np.int64)
        self._col_ids = np.asarray(col_ids, dtype=np.int64)
        self._mat = np.asarray(mat, dtype=float)
        self._integrated = True
        self._result = None
        return self

    def _legacy_gradients(self, ent):
        """(order, w, dN/dx of shape (nq, dim, nv))."""
        order = legacy_order(ent.rtti())
        w = self._provider.weights(ent.rtti(), order)
        return order, w, self._physical_gradients(ent, order)

    # ------------------------------------------------------------------
    def u(self, ent):
        """Load vector: integral of each shape function."""
        kind = ent.rtti()
        order = legacy_order(kind)
        if kind == "node":
            return self._set_legacy(ent, order, [[1.0]], ent.ids(), [0])
        ref = self._provider.cached(("u", kind, order),
                                    lambda: _u_integral(self._provider, kind, order))
        return self._set_legacy(ent, order, (ent.size() * ref)[:, None], ent.ids(), [0])

    def u2(self, ent):
        """Consistent mass matrix."""
        kind = ent.rtti()
        order = legacy_order(kind)
        if kind == "node":
            return self._set_legacy(ent, order, [[1.0]], ent.ids(), ent.ids())
        ref = self._provider.cached(("u2", kind, order),
                                    lambda: _u2_integral(self._provider, kind, order))
        return self._set_legacy(ent, order, ent.size() * ref, ent.ids(), ent.ids())

    def _laplace(self, ent, n_axes):
        order, w, dNdx = self._legacy_gradients(ent)
        if dNdx.shape[1] < n_axes:
            raise ConfigurationError(
                f"{n_axes} derivative axes requested on a {dNdx.shape[1]}-dimensional entity")
        G = dNdx[:, :n_axes, :]
        mat = ent.size() * np.einsum("q,qki,qkj->ij", w, G, G)
        return self._set_legacy(ent, order, mat, ent.ids(), ent.ids())

    def ux2(self, ent):
        return self._laplace(ent, 1)

    def ux2uy2(self, ent):
        if ent.rtti() == "tri":
            return self._tri_laplace(ent)
        return self._laplace(ent, 2)

    def ux2uy2uz2(self, ent):
        """Laplace stiffness using every spatial derivative of the entity."""
        dim = ent.dim()
        if dim == 1:
            return self.ux2(ent)
        if dim == 2:
            return self.ux2uy2(ent)
        return self._laplace(ent, 3)

    def _tri_laplace(self, ent):
        # closed form for the linear triangle
        p1, p2, p3 = (ent.node(i).pos() for i in range(3))
        J = 2.0 * ent.size()
        a = np.dot(p3 - p1, p3 - p1) / J
        b = -np.dot(p3 - p1, p2 - p1) / J
        c = np.dot(p2 - p1, p2 - p1) / J
        m00 = 0.5 * a + b + 0.5 * c
        m10 = -0.5 * a - 0.5 * b
        m20 = -0.5 * b - 0.5 * c
        mat = np.array([[m00, m10, m20],
                        [m10, 0.5 * a, 0.5 * b],
                        [m20, 0.5 * b, 0.5 * c]])
        return self._set_legacy(ent, legacy_order("tri"), mat, ent.ids(), ent.ids())

    def dudi(self, ent, dim: int):
        """Diagonal matrix of integrated shape-function derivatives d N_i / d x_dim."""
        order, w, dNdx = self._legacy_gradients(ent)
        if dim >= dNdx.shape[1]:
            raise ConfigurationError(f"dudi axis {dim} on a {dNdx.shape[1]}-dimensional entity")
        mat = np.diag(ent.size() * (w @ dNdx[:, dim, :]))
        return self._set_legacy(ent, order, mat, ent.ids(), ent.ids())

    def ux(self, ent):
        return self.dudi(ent, 0)

    def uy(self, ent):
        return self.dudi(ent, 1)

    def uz(self, ent):
        return self.dudi(ent, 2)

    # ------------------------------------------------------------------
    def _gradient_base(self, ent, n_c, voigt):
        """
        Per-quadrature B matrices ``(nq, n_c, n_dof)`` and their dof ids.

        ``n_c == 1`` or a scalar layout (``dof_per_coeff == 0``) yields the
        ``dim`` physical derivatives of a scalar field; otherwise a strain base
        with ``dim`` normal rows plus, for ``n_c > dim``, the shear rows.
        """
        order, w, dNdx = self._legacy_gradients(ent)
        dim = dNdx.shape[1]
        nv = ent.node_count()
        ids = ent.ids()
        n_c = max(n_c, dim)

        if self._dof_per_coeff == 0:
            B = np.zeros((len(w), n_c, nv))
            B[:, :dim, :] = dNdx
            return order, w, B, ids

        if n_c not in (dim, ELASTIC_ROWS[dim]):
            raise ConfigurationError(
                f"Strain base with {n_c} rows on a {dim}-dimensional entity")
        a = 1.0 if voigt else 1.0 / np.sqrt(2.0)
        _, table = gradient_layout(dim, dim, elastic=True)
        B = np.zeros((len(w), n_c, nv * dim))
        for row, comp, axis, shear in table:
            if row < n_c:
                B[:, row, comp * nv:(comp + 1) * nv] = dNdx[:, axis, :] * (a if shear else 1.0)
        dof_ids = np.concatenate([ids + d * self._dof_per_coeff for d in range(dim)])
        return order, w, B, dof_ids

    def grad_u(self, ent, n_c: int = 1, voigt: bool = False):
        """Integrated gradient base, shape ``(n_dof, n_c)``."""
        order, w, B, ids = self._gradient_base(ent, n_c, voigt)
        mat = ent.size() * np.einsum("q,qij->ji", w, B)
        return self._set_legacy(ent, order, mat, ids, np.arange(B.shape[1]))

    def grad_u2(self, ent, C, voigt: bool = False):
        """Stiffness ``sum_q w_q |e| B_q^T C B_q`` (``c B^T B`` for a 1x1 ``C``)."""
        C = np.atleast_2d(np.asarray(C, dtype=float))
        order, w, B, ids = self._gradient_base(ent, C.shape[0], voigt)
        if C.size == 1:
            mat = C[0, 0] * np.einsum("q,qki,qkj->ij", w, B, B)
        else:
            assert_shape(C, (B.shape[1], B.shape[1]), "constitutive matrix")
            mat = np.einsum("q,qki,kl,qlj->ij", w, B, C, B)
        return self._set_legacy(ent, order, ent.size() * mat, ids, ids)

    def stress(self, ent, C, u, voigt: bool = False) -> np.ndarray:
        """Weighted mean of ``C @ B_q @ u[ids]`` over the rule points."""
        C = np.atleast_2d(np.asarray(C, dtype=float))
        u = np.asarray(u, dtype=float)
        _, w, B, ids = self._gradient_base(ent, C.shape[0], voigt)
        if C.shape[1] != B.shape[1]:
            raise SizeMismatch(f"Constitutive matrix {C.shape} for a {B.shape[1]}-row strain base")
        strain = np.einsum("q,qij,j->i", w, B, u[ids])
        return C @ strain
