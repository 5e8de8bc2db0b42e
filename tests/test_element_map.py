import numpy as np
import pytest

from pyfeasm.assembly.element_map import (ElementMatrixMap, create_du_map, create_gradient_map,
                                          create_identity_map, create_u_map, create_value_map)
from pyfeasm.assembly.element_matrix import ElementMatrix
from pyfeasm.assembly.field import CallableFunction
from pyfeasm.assembly.global_assembly import create_mass_matrix
from pyfeasm.assembly.sparse import (SparseMapMatrix, SparseMatrix, expand_pairs,
                                     pattern_from_pairs)
from pyfeasm.config import config_override
from pyfeasm.errors import SizeMismatch, Unimplemented
from pyfeasm.utils.meshgen import constant_space_mesh, point_cloud, structured_triangles


@pytest.fixture
def mesh():
    # 9 nodes, 8 cells, 8 boundary edges on the unit square
    return structured_triangles(1.0, 1.0, nx=2, ny=2)


def test_value_map_layout(mesh):
    u = create_value_map(mesh, 1)
    assert len(u) == mesh.cell_count() and u.size() == 8
    assert u.dof == 9 and u.dof_b == 9 and not u.is_constant_space
    assert all(m.is_integrated for m in u)
    for m, cell in zip(u, mesh.cells()):
        assert list(m.row_ids) == list(cell.ids())
    assert create_u_map is create_value_map and create_du_map is create_gradient_map


def test_value_map_vector_layout(mesh):
    u = create_value_map(mesh, 1, n_coeff=2, dof_offset=3)
    assert u.dof == 2 * 9 + 3
    ids = mesh.cell(0).ids()
    assert list(u[0].row_ids) == list(ids + 3) + list(ids + 12)


def test_linear_form_sums_to_area(mesh):
    u = create_value_map(mesh, 2)
    R = u.integrate(1.0)
    assert len(R) == 9 and np.isclose(R.sum(), 1.0)
    assert np.allclose(u.assemble(1.0, np.zeros(9)), R)
    # a field evaluated per cell gives the same load
    assert np.allclose(u.integrate(CallableFunction(lambda p, e: 1.0)), R)


def test_per_cell_coefficients_and_scales(mesh):
    u = create_value_map(mesh, 2)
    c = [float(i) for i in range(8)]
    R = u.integrate(c)
    assert np.isclose(R.sum(), sum(ci * cell.size() for ci, cell in zip(c, mesh.cells())))
    assert np.allclose(u.integrate(1.0, scale=c), R)


def test_integrate_n(mesh):
    u = create_value_map(mesh, 2)
    x = mesh.positions()[:, 0]
    R = u.integrate_n(x)
    # integral of the interpolated x over the square
    assert np.isclose(R.sum(), 0.5)
    with pytest.raises(SizeMismatch):
        u.integrate_n(np.ones(4))


def test_boundary_map_from_entities(mesh):
    u = create_value_map(mesh.boundaries(), 1)
    assert u.dof == 9
    assert np.isclose(u.integrate(1.0).sum(), 4.0)


def test_mass_from_map_matches_global_assembly(mesh):
    u = create_value_map(mesh, 2)
    S = u.integrate_bilinear(u)
    M = create_mass_matrix(mesh, 2)
    assert np.allclose(S.to_dense(), M.to_dense())
    assert np.isclose(S.to_dense().sum(), 1.0)


def test_sparse_target_gets_pattern(mesh):
    u = create_value_map(mesh, 2)
    A = SparseMatrix()
    u.integrate_bilinear(u, 1.0, A)
    pairs = {(i, j) for cell in mesh.cells() for i in cell.ids() for j in cell.ids()}
    assert A.shape == (9, 9) and A.nnz == len(pairs)
    assert np.allclose(A.to_dense(), create_mass_matrix(mesh, 2).to_dense())


def test_pattern_from_dot_and_from_pair(mesh):
    u = create_value_map(mesh, 1)
    M = u.dot(u)
    A = M.fill_sparsity_pattern(SparseMatrix())
    B = u.fill_sparsity_pattern(SparseMatrix(), u)
    assert A.nnz == B.nnz
    # the same extent is not rebuilt
    assert M.fill_sparsity_pattern(A) is A and A.nnz == B.nnz
    M.assemble(1.0, A)
    assert np.isclose(A.values.sum(), 1.0)


def test_point_cloud_pattern_is_diagonal():
    cloud = point_cloud(np.random.default_rng(0).random((6, 2)))
    u = create_value_map(cloud, 1)
    A = u.dot(u).fill_sparsity_pattern(SparseMatrix())
    assert A.nnz == 6
    B = u.fill_sparsity_pattern(SparseMatrix(), u)
    assert B.nnz == 6


def test_merging_patterns(mesh):
    u = create_value_map(mesh, 1)
    A = SparseMatrix()
    A.build_sparsity_pattern([[0]], cols=1)
    A.set_val(0, 0, 7.0)
    # a pattern smaller than the map's extent is merged, values kept
    u.fill_sparsity_pattern(A, u)
    assert A.shape == (9, 9)
    assert A.get_val(0, 0) == 7.0 and A.get_val(0, 1) == 0.0


def test_stiffness_and_chained_algebra(mesh):
    du = create_gradient_map(mesh, 1)
    K = du.integrate_bilinear(du).to_dense()
    assert np.allclose(K, K.T) and np.allclose(K.sum(axis=1), 0.0)
    K2 = du.mult(2.0).dot(du).assemble(1.0, SparseMapMatrix()).to_dense()
    assert np.allclose(K2, 2.0 * K)
    K3 = du.add(du, b=2.0).dot(du).assemble(1.0, SparseMapMatrix()).to_dense()
    assert np.allclose(K3, 3.0 * K)


def test_per_cell_matrix_coefficients(mesh):
    du = create_gradient_map(mesh, 1)
    K = du.integrate_bilinear(du).to_dense()
    S = du.integrate_bilinear(du, [2.0 * np.eye(2)] * 8).to_dense()
    assert np.allclose(S, 2.0 * K)


def test_elastic_map(mesh):
    du = create_gradient_map(mesh, 1, elastic=True, n_coeff=2, kelvin=False)
    assert du.dof == 18 and du[0].mat.shape == (6, 3)
    C = np.array([[2.0, 1.0, 0.0], [1.0, 2.0, 0.0], [0.0, 0.0, 0.5]])
    K = du.integrate_bilinear(du, C).to_dense()
    shift_x = np.r_[np.ones(9), np.zeros(9)]
    assert np.allclose(K @ shift_x, 0.0)


def test_map_mult_dispatch(mesh):
    u = create_value_map(mesh, 2)
    per_node = u.mult(np.arange(9.0))
    for m, orig in zip(per_node, u):
        assert np.allclose(m.mat[:, 0], orig.mat[:, 0] * orig.row_ids)
    per_cell = u.mult([float(i) for i in range(8)])
    assert np.allclose(per_cell[3].mat, 3.0 * u[3].mat)
    with pytest.raises(Unimplemented):
        u.mult(np.ones(5))


def test_map_sym_trace_identity(mesh):
    du = create_gradient_map(mesh, 1, n_coeff=2)
    T = du.trace()
    assert np.allclose(T[0].mat_x[:, 0], T[0].mat_x[:, 3])
    S = du.sym()
    assert np.allclose(S[0].mat_x[:, 1], S[0].mat_x[:, 2])
    I = create_identity_map(mesh, 1, n_coeff=2)
    assert len(I) == 8 and I[0].mat_x.shape[1:] == (4, 6)


def test_map_size_checks(mesh):
    u = create_value_map(mesh, 1)
    v = create_value_map(structured_triangles(1.0, 1.0, nx=1, ny=1), 1)
    with pytest.raises(SizeMismatch):
        u.dot(v)
    with pytest.raises(SizeMismatch):
        u.add(v)
    with pytest.raises(SizeMismatch):
        u.integrate(1.0, scale=[1.0, 2.0])


def test_threads_match_sequential(mesh):
    with config_override(threads=1):
        seq = create_gradient_map(mesh, 2, n_coeff=2)
    with config_override(threads=4, parallel_threshold=1):
        par = create_gradient_map(mesh, 2, n_coeff=2)
    assert len(seq) == len(par)
    for a, b in zip(seq, par):
        assert np.allclose(a.mat_x, b.mat_x)
        assert list(a.row_ids) == list(b.row_ids)


@pytest.mark.parametrize("threads", [1, 4])
@pytest.mark.parametrize("build", [
    lambda m: create_value_map(m, 2),
    lambda m: create_gradient_map(m, 2),
    lambda m: create_gradient_map(m, 2, elastic=True, n_coeff=2),
    lambda m: create_identity_map(m, 2, n_coeff=2),
])
def test_construction_binds_each_entity_once(mesh, monkeypatch, build, threads):
    bound = []
    bind = ElementMatrix._fill_entity_and_order

    def counting(self, ent, order):
        bound.append(ent.id)
        return bind(self, ent, order)

    monkeypatch.setattr(ElementMatrix, "_fill_entity_and_order", counting)
    with config_override(threads=threads, parallel_threshold=1):
        M = build(mesh)
    assert sorted(bound) == list(range(mesh.cell_count()))
    assert all(m.valid for m in M)


def test_quadrature_points_cached(mesh):
    u = create_value_map(mesh, 2)
    pts = u.quadrature_points()
    assert u.quadrature_points() is pts
    assert len(pts) == 8
    assert np.allclose(u[0].w @ pts[0], mesh.cell(0).center())
    assert u.entity_centers().shape == (8, 3)


# ----------------------------------------------------------------------
# Constant space
# ----------------------------------------------------------------------
def test_constant_space_layout():
    cs = create_value_map(constant_space_mesh(), 0, n_coeff=2, dof_offset=9)
    assert cs.is_constant_space and len(cs) == 1
    assert cs.dof == 11
    assert list(cs[0].row_ids) == [9, 10]
    assert np.allclose(cs[0].mat, 1.0)


def test_constant_space_dot(mesh):
    u = create_value_map(mesh, 2)
    cs = create_value_map(constant_space_mesh(), 0, dof_offset=9)
    left = cs.dot(u)
    assert left.dof_a == 10 and left.dof_b == 9
    assert list(left[0].row_ids) == [9]
    assert list(left[0].col_ids) == list(u[0].row_ids)
    assert np.allclose(left[0].mat, u[0].mat.T)
    right = u.dot(cs)
    assert right.dof_a == 9 and right.dof_b == 10
    assert list(right[2].col_ids) == [9]


def test_constant_space_bilinear(mesh):
    u = create_value_map(mesh, 2)
    cs = create_value_map(constant_space_mesh(), 0, dof_offset=9)
    load = u.integrate(1.0)
    col = u.integrate_bilinear(cs).to_dense()
    assert np.allclose(col[:9, 9], load)
    row = cs.integrate_bilinear(u).to_dense()
    assert np.allclose(row[9, :9], load)
    with pytest.raises(Unimplemented):
        u.integrate_bilinear(cs, 1.0, SparseMatrix())


def test_constant_space_size_mismatch(mesh):
    u = create_value_map(mesh, 2)
    cs = create_value_map(constant_space_mesh(), 0, n_coeff=2, dof_offset=9)
    with pytest.raises(SizeMismatch):
        cs.dot(u)


# ----------------------------------------------------------------------
# Container and row collector
# ----------------------------------------------------------------------
def test_container_operations(unit_triangle):
    m = ElementMatrixMap()
    m.resize(3)
    assert len(m) == 3 and all(isinstance(e, ElementMatrix) for e in m)
    m.push_back(ElementMatrix().u2(unit_triangle.cell(0)))
    assert m.size() == 4
    m.resize(1)
    assert m.size() == 1
    m.clear()
    assert m.size() == 0 and m.mats() == []
    m.set_dofs(2, 5, 1)
    assert (m.dof_a, m.dof_b, m.n_coeff, m.dof_per_coeff, m.dof_offset) == (11, 11, 2, 5, 1)
    m.set_dof(4)
    assert (m.dof_a, m.dof_b) == (4, 0)


def test_row_collector(unit_triangle):
    M = ElementMatrix().u2(unit_triangle.cell(0))
    m = ElementMatrixMap()
    m.add_row(2, M)
    ones = np.ones(3)
    r = m.mult_rows(ones, ones)
    assert r.shape == (3,) and np.isclose(r[2], 0.5)
    r = m.mult_rows(ones, np.zeros(3), m=2.0 * ones)
    assert np.isclose(r[2], 1.0)
    r = m.mult_rows(ones, np.zeros(3), m=ones, n=ones)
    assert np.isclose(r[2], 0.0)


def test_repeated_pattern_merges_do_not_duplicate(mesh):
    u = create_value_map(mesh, 1)
    pairs = {(i, j) for cell in mesh.cells() for i in cell.ids() for j in cell.ids()}
    A = u.fill_sparsity_pattern(SparseMatrix(), u)
    r, c = expand_pairs([m.row_ids for m in u], [m.row_ids for m in u])
    for _ in range(3):
        A.add_sparsity_pattern(pattern_from_pairs(r, c, 9))
    assert A.nnz == len(pairs)
