import matplotlib.pyplot as plt
import pytest

from pyfeasm.assembly.global_assembly import create_mass_matrix
from pyfeasm.plotting import draw_mesh, draw_sparsity_pattern
from pyfeasm.utils.meshgen import structured_hex, structured_line, structured_quad


def test_draw_2d_mesh():
    mesh = structured_quad(2.0, 1.0, nx=2, ny=1)
    ax = draw_mesh(mesh, node_ids=True, cell_ids=True)
    # cells and boundary facets
    assert len(ax.collections) == 2
    assert len(ax.texts) == mesh.node_count() + mesh.cell_count()
    plt.close("all")


def test_draw_line_mesh():
    fig, ax = plt.subplots()
    assert draw_mesh(structured_line(1.0, 3), ax=ax, plot_nodes=False) is ax
    assert len(ax.collections) == 1
    plt.close(fig)


def test_draw_rejects_volume_mesh():
    with pytest.raises(ValueError):
        draw_mesh(structured_hex(1.0, 1.0, 1.0, nx=1, ny=1, nz=1))


def test_draw_sparsity_pattern():
    M = create_mass_matrix(structured_quad(1.0, 1.0, nx=2, ny=2), 2)
    ax = draw_sparsity_pattern(M)
    assert ax.get_title() == f"9x9, nnz={M.nnz}"
    ax = draw_sparsity_pattern(M.to_dense(), title="mass")
    assert ax.get_title() == "mass"
    plt.close("all")
