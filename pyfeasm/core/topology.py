import numpy as np

from pyfeasm.fem.reference import get_reference, reference_dim


class Node:
    def __init__(self, id, x, y=0.0, z=0.0, tag=None):
        self.id = int(id)
        self.x = float(x)
        self.y = float(y)
        self.z = float(z)
        self.tag = tag

    def __repr__(self):
        return f"Node {self.id}({self.x:.3f}, {self.y:.3f}, {self.z:.3f}, tag='{self.tag}')"

    def pos(self):
        return np.array([self.x, self.y, self.z])

    def __getitem__(self, idx):
        if   idx == 0: return self.x
        elif idx == 1: return self.y
        elif idx == 2: return self.z
        raise IndexError("Node supports indices 0 (x), 1 (y) and 2 (z)")

    def __iter__(self):
        yield self.x
        yield self.y
        yield self.z


class MeshEntity:
    """
    A cell or boundary facet: an ordered list of nodes plus its reference kind.

    The entity only borrows its nodes; the owning :class:`~pyfeasm.core.mesh.Mesh`
    must outlive every operator built on it.
    """

    def __init__(self, id, kind, nodes, marker=0):
        self.id = int(id)
        self.kind = kind
        self.marker = marker
        self._nodes = list(nodes)
        self._ref = get_reference(kind)
        if len(self._nodes) != self._ref.n_nodes:
            raise ValueError(f"'{kind}' needs {self._ref.n_nodes} nodes, got {len(self._nodes)}")
        self._ids = np.array([n.id for n in self._nodes], dtype=np.int64)
        self._ids.setflags(write=False)
        self._shape = None

    def __repr__(self):
        return f"MeshEntity {self.id}('{self.kind}', nodes={self._ids.tolist()})"

    def rtti(self):
        return self.kind

    def dim(self):
        return reference_dim(self.kind)

    def node_count(self):
        return len(self._nodes)

    def node(self, i):
        return self._nodes[i]

    def nodes(self):
        return self._nodes

    def ids(self):
        return self._ids

    def N(self, r):
        return self._ref.shape(r)

    def dNdL(self, r, i):
        return self._ref.derivative(r, i)

    def shape(self):
        if self._shape is None:
            from pyfeasm.core.shape import Shape
            self._shape = Shape(self)
        return self._shape

    def size(self):
        return self.shape().domain_size()

    def center(self):
        return self.shape().center()
