import numpy as np
import pytest

from pyfeasm.core.mesh import Mesh
from pyfeasm.core.topology import MeshEntity, Node
from pyfeasm.utils.meshgen import (constant_space_mesh, point_cloud, structured_hex,
                                   structured_line, structured_quad, structured_tets,
                                   structured_triangles)


def test_node_access():
    n = Node(3, 1.0, 2.0)
    assert n.id == 3
    assert list(n) == [1.0, 2.0, 0.0]
    assert n[1] == 2.0
    with pytest.raises(IndexError):
        n[3]


def test_entity_node_count_checked():
    nodes = [Node(0, 0.0), Node(1, 1.0)]
    with pytest.raises(ValueError):
        MeshEntity(0, "tri", nodes)


def test_unit_triangle_geometry(unit_triangle):
    cell = unit_triangle.cell(0)
    assert cell.rtti() == "tri" and cell.dim() == 2 and cell.node_count() == 3
    assert np.isclose(cell.size(), 0.5)
    assert np.allclose(cell.center()[:2], [1 / 3, 1 / 3])
    inv = cell.shape().inv_jacobian()
    assert np.allclose(inv[:2, :2], np.eye(2))
    assert np.isclose(cell.shape().drstdxyz(0, 0), 1.0)
    assert np.isclose(cell.shape().h(), np.sqrt(2.0))


def test_entity_basis_partition_of_unity(skew_triangle):
    cell = skew_triangle.cell(0)
    r = (0.2, 0.3)
    assert np.isclose(cell.N(r).sum(), 1.0)
    assert np.isclose(cell.dNdL(r, 0).sum(), 0.0)


def test_embedded_edge_length():
    mesh = Mesh(np.array([[0.0, 0.0], [3.0, 4.0]]), [[0, 1]], cell_type="edge")
    assert np.isclose(mesh.cell(0).size(), 5.0)


def test_boundary_derivation():
    mesh = structured_quad(1.0, 1.0, nx=2, ny=2)
    assert mesh.node_count() == 9 and mesh.cell_count() == 4
    assert mesh.boundary_count() == 8
    assert all(b.rtti() == "edge" for b in mesh.boundaries())


@pytest.mark.parametrize("mesh, measure", [
    (structured_line(2.0, 4), 2.0),
    (structured_quad(2.0, 1.0, nx=3, ny=2), 2.0),
    (structured_triangles(2.0, 1.0, nx=3, ny=2), 2.0),
    (structured_hex(1.0, 2.0, 1.0, nx=2, ny=1, nz=2), 2.0),
    (structured_tets(1.0, 1.0, 1.0, nx=1, ny=1, nz=1), 1.0),
])
def test_structured_meshes_cover_domain(mesh, measure):
    total = sum(c.size() for c in mesh.cells())
    assert np.isclose(total, measure)


def test_structured_tets_counts():
    mesh = structured_tets(1.0, 1.0, 1.0, nx=2, ny=1, nz=1)
    assert mesh.cell_count() == 12
    assert mesh.node_count() == 12
    # every tet has positive volume
    assert min(c.size() for c in mesh.cells()) > 0.0


def test_structured_offset():
    mesh = structured_quad(1.0, 1.0, nx=1, ny=1, offset=(2.0, -1.0))
    assert np.allclose(mesh.positions().min(axis=0), [2.0, -1.0])


def test_point_cloud_and_constant_space():
    cloud = point_cloud([[0.0, 0.0], [1.0, 0.0], [5.0, 5.0]])
    assert cloud.cell_count() == 3 and cloud.cell(2).rtti() == "node"
    assert cloud.boundary_count() == 0

    empty = constant_space_mesh()
    assert empty.node_count() == 0 and empty.cell_count() == 0
