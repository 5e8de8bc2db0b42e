"""pyfeasm.core.mesh
Minimal unstructured mesh: node coordinates, cells and boundary facets.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from pyfeasm.core.topology import MeshEntity, Node
from pyfeasm.fem.reference import reference_dim

logger = logging.getLogger(__name__)

# cell kind -> (facet kind, local facet node lists)
_FACETS = {
    "edge": ("node", ((0,), (1,))),
    "tri": ("edge", ((0, 1), (1, 2), (2, 0))),
    "quad": ("edge", ((0, 1), (1, 2), (2, 3), (3, 0))),
    "tet": ("tri", ((0, 1, 2), (0, 3, 1), (1, 3, 2), (2, 3, 0))),
    "hex": ("quad", ((0, 3, 2, 1), (4, 5, 6, 7), (0, 1, 5, 4),
                     (1, 2, 6, 5), (2, 3, 7, 6), (3, 0, 4, 7))),
}


class Mesh:
    """
    Parameters
    ----------
    nodes : (n, d) array_like
        Node coordinates, d in {1, 2, 3}. A mesh without nodes is allowed and
        denotes a constant space.
    cells : (m, k) array_like of int
        Cell connectivity into ``nodes``.
    cell_type : str
        Reference kind shared by all cells.
    boundaries, boundary_type : optional
        Facet connectivity; derived from ``cells`` when omitted.
    """

    def __init__(self, nodes, cells, cell_type: str = "tri",
                 boundaries=None, boundary_type: Optional[str] = None,
                 cell_markers: Optional[Sequence[int]] = None):
        coords = np.asarray(nodes, dtype=float)
        if coords.size == 0:
            coords = np.zeros((0, 3))
        if coords.ndim == 1:
            coords = coords[:, None]
        if coords.shape[1] > 3:
            raise ValueError(f"Node coordinates must have at most 3 columns, got {coords.shape}")
        self.dim = coords.shape[1] if len(coords) else 0
        pad = np.zeros((len(coords), 3))
        pad[:, :coords.shape[1]] = coords
        self._positions = pad
        self.cell_type = cell_type
        self._nodes: List[Node] = [Node(i, *p) for i, p in enumerate(pad)]

        cells = np.asarray(cells, dtype=np.int64)
        if cells.size == 0:
            cells = np.zeros((0, 0), dtype=np.int64)
        markers = cell_markers if cell_markers is not None else [0] * len(cells)
        self._cells = [MeshEntity(i, cell_type, [self._nodes[j] for j in c], marker=m)
                       for i, (c, m) in enumerate(zip(cells, markers))]
        self.cell_connectivity = cells

        if boundaries is None:
            boundaries, boundary_type = self._derive_boundaries()
        boundaries = np.asarray(boundaries, dtype=np.int64)
        self._boundaries = [MeshEntity(i, boundary_type, [self._nodes[j] for j in b])
                            for i, b in enumerate(boundaries)] if len(boundaries) else []

    def _derive_boundaries(self):
        if self.cell_type not in _FACETS or len(self._cells) == 0:
            if len(self._cells):
                logger.debug(f"No facet table for '{self.cell_type}'; mesh has no boundaries")
            return np.zeros((0, 0), dtype=np.int64), None
        facet_kind, local = _FACETS[self.cell_type]
        owners = {}
        order = []
        for c in self.cell_connectivity:
            for f in local:
                facet = tuple(int(c[i]) for i in f)
                key = tuple(sorted(facet))
                if key not in owners:
                    owners[key] = [facet, 0]
                    order.append(key)
                owners[key][1] += 1
        facets = [owners[k][0] for k in order if owners[k][1] == 1]
        return np.array(facets, dtype=np.int64).reshape(len(facets), len(local[0])), facet_kind

    def __repr__(self):
        return (f"Mesh(dim={self.dim}, nodes={self.node_count()}, "
                f"cells={self.cell_count()} '{self.cell_type}', boundaries={self.boundary_count()})")

    def node_count(self):
        return len(self._nodes)

    def cell_count(self):
        return len(self._cells)

    def boundary_count(self):
        return len(self._boundaries)

    def node(self, i):
        return self._nodes[i]

    def nodes(self):
        return self._nodes

    def cell(self, i):
        return self._cells[i]

    def cells(self):
        return self._cells

    def boundary(self, i):
        return self._boundaries[i]

    def boundaries(self):
        return self._boundaries

    def positions(self):
        return self._positions[:, :max(self.dim, 1)]

    def cell_dim(self):
        return reference_dim(self.cell_type)
