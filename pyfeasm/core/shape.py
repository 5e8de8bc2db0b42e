"""pyfeasm.core.shape
Reference -> physical geometry of a single entity.
"""
import numpy as np

from pyfeasm.fem.reference import REFERENCE_MEASURE, get_reference
from pyfeasm.integration.quadrature import volume


class Shape:
    def __init__(self, entity):
        self.entity = entity
        self.kind = entity.kind
        self.ref = get_reference(entity.kind)
        self.coords = np.array([n.pos() for n in entity.nodes()])   # (nv, 3)
        self._size = None
        self._inv_jac = None

    def xyz(self, r):
        """Physical position of reference point ``r``."""
        return self.ref.shape(r) @ self.coords

    def center(self):
        return self.xyz(self.ref.center())

    def jacobian(self, r):
        """(dim, 3) array with ``J[a, k] = d x_k / d r_a``."""
        return self.ref.grad(r) @ self.coords

    def _det(self, r):
        J = self.jacobian(r)
        if J.shape[0] == 0:
            return 1.0
        # Gram determinant: valid for entities embedded in higher dimensions
        return float(np.sqrt(abs(np.linalg.det(J @ J.T))))

    def domain_size(self):
        """Length, area or volume of the entity."""
        if self._size is None:
            if self.ref.dim == 0:
                self._size = 1.0
            else:
                pts, wts = volume(self.kind, 4)
                dets = np.array([self._det(p) for p in pts])
                self._size = float(np.dot(wts, dets)) * REFERENCE_MEASURE[self.kind]
        return self._size

    def inv_jacobian(self):
        """
        3x3 matrix with entry ``[a, k] = d r_a / d x_k`` taken at the reference
        center. Rows of inactive reference axes are zero.
        """
        if self._inv_jac is None:
            inv = np.zeros((3, 3))
            if self.ref.dim > 0:
                J = self.jacobian(self.ref.center())
                inv[:self.ref.dim, :] = np.linalg.pinv(J.T)
            inv.setflags(write=False)
            self._inv_jac = inv
        return self._inv_jac

    def drstdxyz(self, i, j):
        return self.inv_jacobian()[i, j]

    def h(self):
        """Longest distance between two nodes."""
        c = self.coords
        d = np.linalg.norm(c[:, None, :] - c[None, :, :], axis=-1)
        return float(d.max())
