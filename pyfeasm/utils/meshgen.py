"""pyfeasm.utils.meshgen
Structured mesh generators for tests and examples.
"""
from typing import Optional, Sequence

import numba
import numpy as np

from pyfeasm.core.mesh import Mesh

__all__ = ["structured_line", "structured_quad", "structured_triangles",
           "structured_hex", "structured_tets", "point_cloud", "constant_space_mesh"]


# Kuhn split of the unit cube into six tetrahedra: every tet walks from corner
# 0 to corner 7 along one permutation of the axes (corner bit code i + 2j + 4k).
_KUHN = np.array([
    [0, 1, 3, 7], [0, 1, 5, 7], [0, 2, 3, 7],
    [0, 2, 6, 7], [0, 4, 5, 7], [0, 4, 6, 7],
], dtype=np.int64)


@numba.jit(nopython=True, cache=True)
def _grid_nodes(x, y, z):
    nx, ny, nz = len(x), len(y), len(z)
    out = np.zeros((nx * ny * nz, 3))
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                n = i + nx * (j + ny * k)
                out[n, 0] = x[i]
                out[n, 1] = y[j]
                out[n, 2] = z[k]
    return out


@numba.jit(nopython=True, parallel=True, cache=True)
def _quad_cells(nx, ny):
    cells = np.empty((nx * ny, 4), dtype=np.int64)
    for j in numba.prange(ny):
        for i in range(nx):
            e = j * nx + i
            n0 = j * (nx + 1) + i
            cells[e, 0] = n0
            cells[e, 1] = n0 + 1
            cells[e, 2] = n0 + nx + 2
            cells[e, 3] = n0 + nx + 1
    return cells


@numba.jit(nopython=True, parallel=True, cache=True)
def _hex_corners(nx, ny, nz):
    """Global ids of the 8 cube corners in bit-code order, per cell."""
    sx = nx + 1
    sxy = (nx + 1) * (ny + 1)
    corners = np.empty((nx * ny * nz, 8), dtype=np.int64)
    for k in numba.prange(nz):
        for j in range(ny):
            for i in range(nx):
                e = i + nx * (j + ny * k)
                n0 = i + sx * j + sxy * k
                for c in range(8):
                    di = c & 1
                    dj = (c >> 1) & 1
                    dk = (c >> 2) & 1
                    corners[e, c] = n0 + di + sx * dj + sxy * dk
    return corners


def _offset(coords: np.ndarray, offset: Optional[Sequence[float]]):
    if offset is not None:
        off = np.asarray(offset, dtype=float)
        coords[:, :len(off)] += off
    return coords


def structured_line(L: float = 1.0, n: int = 4, offset: Optional[float] = None) -> Mesh:
    x = np.linspace(0.0, L, n + 1)
    if offset is not None:
        x = x + offset
    cells = np.column_stack([np.arange(n), np.arange(1, n + 1)])
    return Mesh(x[:, None], cells, cell_type="edge")


def structured_quad(Lx: float, Ly: float, *, nx: int, ny: int,
                    offset: Optional[Sequence[float]] = None) -> Mesh:
    """``nx x ny`` bilinear quads on ``[0, Lx] x [0, Ly]``, counter-clockwise."""
    coords = _grid_nodes(np.linspace(0.0, Lx, nx + 1), np.linspace(0.0, Ly, ny + 1),
                         np.zeros(1))[:, :2]
    return Mesh(_offset(coords, offset), _quad_cells(nx, ny), cell_type="quad")


def structured_triangles(Lx: float, Ly: float, *, nx: int, ny: int,
                         offset: Optional[Sequence[float]] = None) -> Mesh:
    """Each quad of :func:`structured_quad` split along its 0-2 diagonal."""
    coords = _grid_nodes(np.linspace(0.0, Lx, nx + 1), np.linspace(0.0, Ly, ny + 1),
                         np.zeros(1))[:, :2]
    q = _quad_cells(nx, ny)
    tris = np.empty((2 * len(q), 3), dtype=np.int64)
    tris[0::2] = q[:, [0, 1, 2]]
    tris[1::2] = q[:, [0, 2, 3]]
    return Mesh(_offset(coords, offset), tris, cell_type="tri")


def structured_hex(Lx: float, Ly: float, Lz: float, *, nx: int, ny: int, nz: int,
                   offset: Optional[Sequence[float]] = None) -> Mesh:
    coords = _grid_nodes(np.linspace(0.0, Lx, nx + 1), np.linspace(0.0, Ly, ny + 1),
                         np.linspace(0.0, Lz, nz + 1))
    corners = _hex_corners(nx, ny, nz)
    # bit code -> bottom face counter-clockwise, then top face
    cells = corners[:, [0, 1, 3, 2, 4, 5, 7, 6]]
    return Mesh(_offset(coords, offset), cells, cell_type="hex")


def structured_tets(Lx: float, Ly: float, Lz: float, *, nx: int, ny: int, nz: int,
                    offset: Optional[Sequence[float]] = None) -> Mesh:
    """Conforming six-tetrahedra split of :func:`structured_hex`."""
    coords = _grid_nodes(np.linspace(0.0, Lx, nx + 1), np.linspace(0.0, Ly, ny + 1),
                         np.linspace(0.0, Lz, nz + 1))
    corners = _hex_corners(nx, ny, nz)
    cells = corners[:, _KUHN].reshape(-1, 4)
    return Mesh(_offset(coords, offset), cells, cell_type="tet")


def point_cloud(points) -> Mesh:
    """Mesh of isolated ``node`` cells, one per point."""
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    cells = np.arange(len(pts), dtype=np.int64)[:, None]
    return Mesh(pts, cells, cell_type="node")


def constant_space_mesh() -> Mesh:
    """Mesh without nodes; value maps built on it are constant spaces."""
    return Mesh(np.zeros((0, 3)), np.zeros((0, 0), dtype=np.int64))
