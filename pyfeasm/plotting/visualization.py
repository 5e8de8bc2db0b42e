"""pyfeasm.plotting.visualization
Quick matplotlib views of meshes and assembled sparsity patterns.
"""
import logging

import matplotlib.pyplot as plt
import numpy as np
import scipy.sparse as sp
from matplotlib.collections import LineCollection, PolyCollection

from pyfeasm.assembly.sparse import SparseMapMatrix, SparseMatrix

logger = logging.getLogger(__name__)

__all__ = ["draw_mesh", "draw_sparsity_pattern"]

# corner nodes drawn per cell kind
_CORNERS = {"node": 1, "edge": 2, "edge3": 2, "tri": 3, "tri6": 3, "quad": 4, "quad8": 4}


def draw_mesh(mesh, *, ax=None, plot_nodes=True, node_ids=False, cell_ids=False,
              facecolor=(0.55, 0.7, 0.9, 0.35), show=False):
    """
    Draw a 1D or 2D mesh: cell outlines (filled in 2D), boundary facets in
    dark gray and optionally node and cell labels.

    Returns
    -------
    matplotlib.axes.Axes
    """
    if mesh.dim > 2:
        raise ValueError(f"draw_mesh supports 1D and 2D meshes, got dim={mesh.dim}")
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 6))
    pos = np.zeros((mesh.node_count(), 2))
    pos[:, :mesh.dim] = mesh.positions()[:, :mesh.dim]

    n_corner = _CORNERS.get(mesh.cell_type)
    if n_corner is None:
        raise ValueError(f"draw_mesh cannot draw '{mesh.cell_type}' cells")
    corners = [pos[c.ids()[:n_corner]] for c in mesh.cells()]
    if n_corner >= 3:
        ax.add_collection(PolyCollection(corners, facecolors=facecolor,
                                         edgecolors="black", linewidths=0.8, zorder=1))
    elif n_corner == 2:
        ax.add_collection(LineCollection(corners, colors="black", linewidths=0.9, zorder=1))

    if mesh.boundary_count() and mesh.dim == 2:
        segs = [pos[b.ids()[:2]] for b in mesh.boundaries()]
        ax.add_collection(LineCollection(segs, colors="dimgray", linewidths=1.8, zorder=2))

    if plot_nodes:
        ax.plot(pos[:, 0], pos[:, 1], "o", color="black", markersize=3, zorder=3)
    if node_ids:
        for i, p in enumerate(pos):
            ax.annotate(str(i), p, fontsize=7, color="blue", zorder=4)
    if cell_ids:
        for c in mesh.cells():
            ax.annotate(str(c.id), pos[c.ids()[:n_corner]].mean(axis=0),
                        fontsize=7, color="red", ha="center", zorder=4)

    ax.autoscale_view()
    ax.set_aspect("equal")
    logger.debug(f"drew {mesh!r}")
    if show:
        plt.show()
    return ax


def _as_scipy(A):
    if isinstance(A, SparseMatrix):
        return A.to_scipy()
    if isinstance(A, SparseMapMatrix):
        return A.to_csr()
    if sp.issparse(A):
        return A.tocsr()
    return sp.csr_matrix(np.atleast_2d(np.asarray(A, dtype=float)))


def draw_sparsity_pattern(A, *, ax=None, markersize=2.0, title=None, show=False):
    """Spy plot of any pyfeasm or scipy sparse matrix (or a dense array)."""
    M = _as_scipy(A)
    if ax is None:
        _, ax = plt.subplots(figsize=(6, 6))
    ax.spy(M, markersize=markersize)
    ax.set_title(title if title is not None else f"{M.shape[0]}x{M.shape[1]}, nnz={M.nnz}")
    if show:
        plt.show()
    return ax
