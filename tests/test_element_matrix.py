import numpy as np
import pytest

from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.config import config_override
from pyfeasm.errors import (ConfigurationError, SizeMismatch, Unimplemented,
                            UninitializedOperator)
from pyfeasm.utils.meshgen import structured_line, structured_triangles


def test_pot_integrates_shape_functions(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 1, sum=True)
    assert u.is_integrated
    assert u.mat.shape == (3, 1)
    assert np.allclose(u.mat[:, 0], 1.0 / 6.0)
    assert np.isclose(u.mat.sum(), unit_triangle.cell(0).size())
    assert list(u.row_ids) == [0, 1, 2]


def test_pot_vector_layout(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 1, sum=True,
                            n_coeff=2, dof_per_coeff=3, dof_offset=10)
    assert u.mat.shape == (6, 2)
    assert list(u.row_ids) == [10, 11, 12, 13, 14, 15]
    # each component only sees its own block
    assert np.allclose(u.mat[:3, 1], 0.0) and np.allclose(u.mat[3:, 0], 0.0)
    assert np.allclose(u.mat[:3, 0], u.mat[3:, 1])


def test_grad_on_unit_triangle(unit_triangle):
    du = ElementMatrix().grad(unit_triangle.cell(0), 1, sum=True)
    expected = 0.5 * np.array([[-1.0, -1.0], [1.0, 0.0], [0.0, 1.0]])
    assert np.allclose(du.mat, expected)


def test_grad_layout_sizes(unit_triangle):
    cell = unit_triangle.cell(0)
    full = ElementMatrix().grad(cell, 1, n_coeff=2, dof_per_coeff=3)
    assert full.mat_x.shape[1:] == (4, 6)
    strain = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3)
    assert strain.mat_x.shape[1:] == (3, 6)
    assert strain.elastic


def test_kelvin_scales_shear_rows(unit_triangle):
    cell = unit_triangle.cell(0)
    voigt = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=False)
    kelvin = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=True)
    assert np.allclose(kelvin.mat_x[:, :2], voigt.mat_x[:, :2])
    assert np.allclose(kelvin.mat_x[:, 2], voigt.mat_x[:, 2] / np.sqrt(2.0))


def test_kelvin_default_from_config(unit_triangle):
    cell = unit_triangle.cell(0)
    with config_override(kelvin=True):
        du = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3)
    ref = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=True)
    assert np.allclose(du.mat_x, ref.mat_x)


def test_pot_reuses_images_on_same_kind():
    mesh = structured_triangles(1.0, 1.0, nx=1, ny=1)
    u = ElementMatrix()
    u.pot(mesh.cell(0), 2, sum=True)
    images = u.mat_x
    u.pot(mesh.cell(1), 2, sum=True)
    assert u.mat_x is images
    assert list(u.row_ids) == list(mesh.cell(1).ids())
    assert np.allclose(u.mat[:, 0], mesh.cell(1).size() / 3.0)


@pytest.mark.parametrize("modify", [
    lambda u, c: u.__imul__(2.0),
    lambda u, c: u.__iadd__(ElementMatrix().pot(c, 2)),
    lambda u, c: u.add(ElementMatrix().pot(c, 2)),
])
def test_modified_images_are_not_moved_to_next_cell(modify):
    mesh = structured_triangles(1.0, 1.0, nx=2, ny=2)
    c0, c1 = mesh.cell(0), mesh.cell(1)
    u = ElementMatrix()
    u.pot(c0, 2, sum=True)
    modify(u, c0)
    u.pot(c1, 2, sum=True)
    assert np.allclose(u.mat, ElementMatrix().pot(c1, 2, sum=True).mat)
    assert list(u.row_ids) == list(c1.ids())


def test_grad_rebuilds_when_shear_scaling_changes(unit_triangle):
    cell = unit_triangle.cell(0)
    du = ElementMatrix()
    voigt = du.grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=False).mat_x.copy()
    kelvin = du.grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=True).mat_x
    ref = ElementMatrix().grad(cell, 1, elastic=True, n_coeff=2, dof_per_coeff=3, kelvin=True)
    assert np.allclose(kelvin, ref.mat_x)
    assert np.allclose(kelvin[:, 2], voigt[:, 2] / np.sqrt(2.0))


def test_layout_then_fill(unit_triangle):
    cell = unit_triangle.cell(0)
    du = ElementMatrix(n_coeff=2, dof_per_coeff=3).layout_grad(cell, 2, elastic=True)
    assert not du.valid
    assert du.mat_x.shape == (3, 3, 6) and not du.mat_x.any()
    assert list(du.row_ids) == [0, 1, 2, 3, 4, 5]
    images = du.mat_x
    du.fill_grad()
    assert du.valid and du.mat_x is images
    ref = ElementMatrix().grad(cell, 2, elastic=True, n_coeff=2, dof_per_coeff=3)
    assert np.allclose(du.mat_x, ref.mat_x)

    u = ElementMatrix().layout_pot(cell, 2)
    assert u.mat_x.shape == (3, 1, 3)
    assert np.allclose(u.fill_pot().mat, ElementMatrix().pot(cell, 2).mat)


def test_fill_needs_layout(unit_triangle):
    with pytest.raises(UninitializedOperator):
        ElementMatrix().fill_pot()
    with pytest.raises(UninitializedOperator):
        ElementMatrix().fill_grad()
    u = ElementMatrix().layout_pot(unit_triangle.cell(0), 2)
    with pytest.raises(UninitializedOperator):
        u.fill_grad()


def test_integrated_value_is_cached_and_frozen(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 1)
    res = u.integrated_value()
    assert u.integrated_value() is res
    assert not res.mat.flags.writeable
    assert res.rows() == 3 and res.cols() == 1
    with pytest.raises(ValueError):
        res.mat[0, 0] = 1.0


def test_integrate_is_idempotent(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 1, sum=True)
    before = u.mat.copy()
    u.integrate()
    assert np.allclose(u.mat, before)


def test_in_place_scaling_and_sum(unit_triangle):
    cell = unit_triangle.cell(0)
    u = ElementMatrix().pot(cell, 1)
    u *= 2.0
    assert np.isclose(u.mat.sum(), 1.0)
    v = ElementMatrix().pot(cell, 1)
    v += ElementMatrix().pot(cell, 1)
    assert np.allclose(v.mat, u.mat)


def test_in_place_sum_mixing_images_and_matrices(unit_triangle):
    cell = unit_triangle.cell(0)
    u = ElementMatrix().pot(cell, 1)
    legacy = ElementMatrix().u(cell)
    with pytest.raises(Unimplemented):
        u += legacy


def test_add_collapses_to_one_row(unit_triangle):
    cell = unit_triangle.cell(0)
    du = ElementMatrix().grad(cell, 1, n_coeff=2, dof_per_coeff=3)
    other = ElementMatrix().grad(cell, 1, n_coeff=2, dof_per_coeff=3)
    du.add(other)
    assert du.mat_x.shape[1] == 4
    du.add(ElementMatrix().pot(cell, 1, n_coeff=2, dof_per_coeff=3), dim=1)
    assert du.mat_x.shape[1] == 1
    assert du.mat.shape == (6, 1)


def test_trace_x_is_divergence(unit_triangle):
    du = ElementMatrix().grad(unit_triangle.cell(0), 1, n_coeff=2, dof_per_coeff=3)
    tr = du.trace_x()
    assert np.allclose(tr, du.mat_x[:, 0] + du.mat_x[:, 3])


def test_identity_fills_diagonal_rows(unit_triangle):
    I = ElementMatrix().identity(unit_triangle.cell(0), 1, n_coeff=2, dof_per_coeff=3)
    assert I.mat_x.shape[1:] == (4, 6)
    assert np.allclose(I.mat_x[:, [0, 3]], 1.0)
    assert np.allclose(I.mat_x[:, [1, 2]], 0.0)


def test_quadrature_points_average_to_center(skew_triangle):
    cell = skew_triangle.cell(0)
    u = ElementMatrix().pot(cell, 2)
    x = u.quadrature_points()
    assert x.shape == (len(u.w), 3)
    assert np.allclose(u.w @ x, cell.center())


def test_copy_is_independent(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 1, sum=True)
    c = u.copy()
    c *= 3.0
    assert np.isclose(u.mat.sum(), 0.5)
    assert np.isclose(c.mat.sum(), 1.5)


def test_set_mat_and_ids():
    E = ElementMatrix()
    E.set_ids([4, 7], [0, 1, 2])
    E.set_mat(np.arange(6.0).reshape(2, 3))
    assert E.is_integrated and E.mat[1, 2] == 5.0
    with pytest.raises(SizeMismatch):
        E.set_mat(np.zeros((3, 3)))


# -------------------------------------------------------------------------
# Errors
# -------------------------------------------------------------------------
def test_vector_layout_needs_dof_per_coeff():
    with pytest.raises(ConfigurationError):
        ElementMatrix().init(2, 0)


def test_vector_gradient_needs_matching_dimension(unit_triangle):
    with pytest.raises(ConfigurationError):
        ElementMatrix().grad(unit_triangle.cell(0), 1, n_coeff=3, dof_per_coeff=3)


def test_identity_on_edge_is_unimplemented():
    mesh = structured_line(1.0, 1)
    with pytest.raises(Unimplemented):
        ElementMatrix().identity(mesh.cell(0), 1)


def test_integrate_without_images():
    with pytest.raises(UninitializedOperator):
        ElementMatrix().integrate()


def test_images_must_match_rule(unit_triangle):
    u = ElementMatrix().pot(unit_triangle.cell(0), 2)
    with pytest.raises(SizeMismatch):
        u.set_mat_x(np.zeros((len(u.w) + 1, 1, 3)))
    with pytest.raises(SizeMismatch):
        u.set_mat_x(np.zeros((len(u.w), 3)))
