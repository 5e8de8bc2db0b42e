"""pyfeasm.assembly.global_assembly
Whole-mesh load vectors, mass and stiffness matrices in one call.
"""
import logging
import time

import numpy as np

from pyfeasm.assembly import algebra
from pyfeasm.assembly.coefficients import CoeffKind, Coefficient, is_per_entity
from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.assembly.sparse import SparseMapMatrix, add_to_vector
from pyfeasm.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["create_force_vector", "create_mass_matrix", "create_stiffness_matrix"]


def _check_n_coeff(n_coeff):
    if n_coeff > 3:
        raise ConfigurationError(f"Number of coefficients must be lower than 4, got {n_coeff}")


def _cell_coefficient(a, n_cells):
    """``cell -> coefficient`` for a constant or a per-cell sequence ``a``."""
    if is_per_entity(a, n_cells):
        return lambda cell: a[cell.id]
    if ((isinstance(a, np.ndarray) and a.ndim == 1)
            or (isinstance(a, (list, tuple)) and all(np.ndim(v) == 0 for v in a))):
        # a constant vector scales field components
        v = Coefficient.vector(a)
        return lambda cell: v
    return lambda cell: a


def _is_dot_constant(c) -> bool:
    """Coefficients that :func:`~pyfeasm.assembly.algebra.dot` takes directly."""
    if isinstance(c, Coefficient):
        return c.kind in (CoeffKind.SCALAR, CoeffKind.MATRIX)
    return np.ndim(c) == 0 or (isinstance(c, np.ndarray) and c.ndim == 2)


def _contract(E: ElementMatrix, c) -> ElementMatrix:
    """``E^T c E``; per-quadrature and vector coefficients scale ``E`` first."""
    if _is_dot_constant(c):
        return algebra.dot(E, E, c)
    return algebra.dot(algebra.mult(E, c), E, 1.0)


def create_force_vector(mesh, order: int, a=1.0, n_coeff: int = 1, dof_offset: int = 0):
    """
    Load vector ``R_i = integral(a N_i)`` over every cell.

    ``a`` is a scalar, a constant vector (one value per field component), or
    one coefficient per cell, possibly per quadrature point.
    """
    _check_n_coeff(n_coeff)
    n_nodes = mesh.node_count()
    R = np.zeros(n_nodes * n_coeff + dof_offset)
    coeff = _cell_coefficient(a, mesh.cell_count())
    t0 = time.perf_counter()
    u = ElementMatrix()
    for cell in mesh.cells():
        u.pot(cell, order, sum=True, n_coeff=n_coeff, dof_per_coeff=n_nodes,
              dof_offset=dof_offset)
        c = coeff(cell)
        if np.ndim(c) == 0 and not isinstance(c, (Coefficient, list, tuple)):
            add_to_vector(R, u, float(c))
        else:
            add_to_vector(R, algebra.mult(u, c))
    logger.info(f"force vector over {mesh.cell_count()} cells, {len(R)} dofs "
                f"({time.perf_counter() - t0:.3f}s)")
    return R


def create_mass_matrix(mesh, order: int, a=1.0, n_coeff: int = 1, dof_offset: int = 0):
    """Mass matrix ``M_ij = integral(a N_i N_j)`` as a :class:`SparseMapMatrix`."""
    _check_n_coeff(n_coeff)
    n_nodes = mesh.node_count()
    S = SparseMapMatrix()
    coeff = _cell_coefficient(a, mesh.cell_count())
    t0 = time.perf_counter()
    u = ElementMatrix()
    for cell in mesh.cells():
        u.pot(cell, order, sum=True, n_coeff=n_coeff, dof_per_coeff=n_nodes,
              dof_offset=dof_offset)
        S.add(_contract(u, coeff(cell)))
    logger.info(f"mass matrix over {mesh.cell_count()} cells: {S!r} "
                f"({time.perf_counter() - t0:.3f}s)")
    return S


def create_stiffness_matrix(mesh, order: int, a=1.0, n_coeff: int = 1, dof_offset: int = 0,
                            elastic: bool = False, kelvin: bool = False):
    """
    Stiffness matrix ``K = integral(grad(N)^T a grad(N))``.

    With ``elastic`` the reduced strain layout is used and ``a`` is typically
    a constitutive matrix.
    """
    _check_n_coeff(n_coeff)
    n_nodes = mesh.node_count()
    S = SparseMapMatrix()
    coeff = _cell_coefficient(a, mesh.cell_count())
    t0 = time.perf_counter()
    du = ElementMatrix()
    for cell in mesh.cells():
        du.grad(cell, order, elastic=elastic, n_coeff=n_coeff, dof_per_coeff=n_nodes,
                dof_offset=dof_offset, kelvin=kelvin)
        S.add(_contract(du, coeff(cell)))
    logger.info(f"stiffness matrix over {mesh.cell_count()} cells: {S!r} "
                f"({time.perf_counter() - t0:.3f}s)")
    return S
