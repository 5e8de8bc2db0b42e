import numpy as np
import pytest

from pyfeasm.assembly import algebra
from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.assembly.legacy import legacy_order
from pyfeasm.errors import ConfigurationError, SizeMismatch, Unimplemented
from pyfeasm.utils.meshgen import point_cloud, structured_quad

MASS_UNIT_TRI = np.array([[1 / 12, 1 / 24, 1 / 24],
                          [1 / 24, 1 / 12, 1 / 24],
                          [1 / 24, 1 / 24, 1 / 12]])
LAPLACE_UNIT_TRI = np.array([[1.0, -0.5, -0.5],
                             [-0.5, 0.5, 0.0],
                             [-0.5, 0.0, 0.5]])


def test_legacy_orders():
    assert legacy_order("tri") == 2
    assert legacy_order("tet10") == 4
    with pytest.raises(Unimplemented):
        legacy_order("pyramid")


def test_load_and_mass(unit_triangle):
    cell = unit_triangle.cell(0)
    E = ElementMatrix()
    assert np.allclose(E.u(cell).mat[:, 0], 1 / 6)
    assert np.allclose(E.u2(cell).mat, MASS_UNIT_TRI)
    assert list(E.col_ids) == [0, 1, 2]


def test_mass_matches_quadrature(skew_triangle):
    cell = skew_triangle.cell(0)
    legacy = ElementMatrix().u2(cell).mat
    u = ElementMatrix().pot(cell, 2)
    assert np.allclose(legacy, algebra.dot(u, u).mat)


def test_laplace_closed_form(unit_triangle, skew_triangle):
    assert np.allclose(ElementMatrix().ux2uy2(unit_triangle.cell(0)).mat, LAPLACE_UNIT_TRI)
    K = ElementMatrix().ux2uy2(skew_triangle.cell(0)).mat
    assert np.isclose(K[0, 0], 0.8125) and np.isclose(K[1, 1], 0.3125)
    assert np.allclose(K.sum(axis=1), 0.0)


def test_laplace_closed_form_matches_quadrature(skew_triangle):
    cell = skew_triangle.cell(0)
    closed = ElementMatrix().ux2uy2(cell).mat
    quad = ElementMatrix().grad_u2(cell, 1.0).mat
    assert np.allclose(closed, quad)
    du = ElementMatrix().grad(cell, 2)
    assert np.allclose(closed, algebra.dot(du, du).mat)


def test_laplace_on_quad():
    cell = structured_quad(1.0, 1.0, nx=1, ny=1).cell(0)
    K = ElementMatrix().ux2uy2(cell).mat
    assert np.allclose(np.diag(K), 2 / 3)
    assert np.allclose(K.sum(axis=0), 0.0)


def test_single_axis_operators(unit_triangle):
    cell = unit_triangle.cell(0)
    assert np.allclose(np.diag(ElementMatrix().ux(cell).mat), [-0.5, 0.5, 0.0])
    assert np.allclose(np.diag(ElementMatrix().uy(cell).mat), [-0.5, 0.0, 0.5])
    K = ElementMatrix().ux2(cell).mat
    assert np.allclose(K, 0.5 * np.outer([-1, 1, 0], [-1, 1, 0]))
    with pytest.raises(ConfigurationError):
        ElementMatrix().uz(cell)


def test_node_cell():
    node = point_cloud([[1.0, 2.0]]).cell(0)
    E = ElementMatrix()
    assert np.allclose(E.u(node).mat, [[1.0]])
    assert np.allclose(E.u2(node).mat, [[1.0]])


def test_scalar_gradient_base(unit_triangle):
    cell = unit_triangle.cell(0)
    G = ElementMatrix().grad_u(cell).mat
    assert np.allclose(G, ElementMatrix().grad(cell, 1, sum=True).mat)
    K = ElementMatrix().grad_u2(cell, 2.0).mat
    assert np.allclose(K, 2.0 * LAPLACE_UNIT_TRI)


def test_strain_stiffness_matches_algebra(skew_triangle):
    cell = skew_triangle.cell(0)
    C = np.array([[2.0, 1.0, 0.0], [1.0, 2.0, 0.0], [0.0, 0.0, 0.5]])
    legacy = ElementMatrix(2, 3).grad_u2(cell, C, voigt=True)
    du = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=False)
    K = algebra.dot(du, du, C)
    assert list(legacy.row_ids) == list(K.row_ids)
    assert np.allclose(legacy.mat, K.mat)


def test_stress_of_rigid_translation(unit_triangle):
    cell = unit_triangle.cell(0)
    C = np.eye(3)
    E = ElementMatrix(2, 3)
    assert np.allclose(E.stress(cell, C, np.ones(6)), 0.0)
    # u_x = x gives a unit normal strain in x
    ux = np.array([0.0, 1.0, 0.0, 0.0, 0.0, 0.0])
    assert np.allclose(E.stress(cell, C, ux), [1.0, 0.0, 0.0])


def test_constitutive_matrix_checked(unit_triangle):
    with pytest.raises(SizeMismatch):
        ElementMatrix(2, 3).grad_u2(unit_triangle.cell(0), np.ones((3, 2)))
