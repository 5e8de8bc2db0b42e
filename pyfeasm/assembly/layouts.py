"""pyfeasm.assembly.layouts
Row tables for gradient-type basis images.

Every special row index used by the builder and the algebra lives here, keyed
by spatial dimension and layout kind, so the strain bookkeeping can be checked
on its own.
"""
from typing import Dict, List, Tuple

from pyfeasm.errors import ConfigurationError, Unimplemented

# (row, field component, physical derivative axis, uses shear factor)
Entry = Tuple[int, int, int, bool]

# Diagonal rows d u_i / d x_i of an unreduced (dim x dim flattened) gradient.
DIVERGENCE_ROWS: Dict[int, Tuple[int, ...]] = {1: (0,), 2: (0, 3), 3: (0, 4, 8)}

# Same rows keyed by image height instead of dimension.
TRACE_ROWS: Dict[int, Tuple[int, ...]] = {1: (0,), 4: (0, 3), 9: (0, 4, 8)}

# Transposed-position row pairs of an unreduced gradient.
SYM_PAIRS: Dict[int, Tuple[Tuple[int, int], ...]] = {
    1: (),
    4: ((1, 2),),
    9: ((1, 3), (2, 6), (5, 7)),
}

# Output rows of the reduced symmetric-strain layout.
ELASTIC_ROWS: Dict[int, int] = {1: 1, 2: 3, 3: 6}

_SCALAR = {d: [(k, 0, k, False) for k in range(d)] for d in (1, 2, 3)}

_VECTOR = {
    1: [(0, 0, 0, False)],
    2: [(0, 0, 0, False), (1, 0, 1, False), (2, 1, 0, False), (3, 1, 1, False)],
    3: [(3 * i + j, i, j, False) for i in range(3) for j in range(3)],
}

_ELASTIC = {
    1: [(0, 0, 0, False)],
    2: [(0, 0, 0, False), (1, 1, 1, False),
        (2, 0, 1, True), (2, 1, 0, True)],
    3: [(0, 0, 0, False), (1, 1, 1, False), (2, 2, 2, False),
        (3, 0, 1, True), (3, 1, 0, True),
        (4, 1, 2, True), (4, 2, 1, True),
        (5, 0, 2, True), (5, 2, 0, True)],
}


def gradient_layout(dim: int, n_coeff: int, elastic: bool) -> Tuple[int, List[Entry]]:
    """Number of output rows and the fill table for a gradient image."""
    if dim not in (1, 2, 3):
        raise ConfigurationError(f"Gradient needs an entity of dimension 1..3, got {dim}")
    if n_coeff > 1 and n_coeff != dim:
        raise ConfigurationError(
            f"Vector gradient needs nCoeff == entity dim, got nCoeff={n_coeff}, dim={dim}")
    if elastic:
        if n_coeff != dim:
            raise ConfigurationError(
                f"Elastic layout needs nCoeff == entity dim, got nCoeff={n_coeff}, dim={dim}")
        return ELASTIC_ROWS[dim], _ELASTIC[dim]
    if n_coeff == 1:
        return dim, _SCALAR[dim]
    return dim * n_coeff, _VECTOR[dim]


def divergence_rows(dim: int) -> Tuple[int, ...]:
    try:
        return DIVERGENCE_ROWS[dim]
    except KeyError:
        raise Unimplemented(f"No divergence rows for dimension {dim}") from None


def trace_rows(n_rows: int) -> Tuple[int, ...]:
    try:
        return TRACE_ROWS[n_rows]
    except KeyError:
        raise Unimplemented(f"Trace undefined for images with {n_rows} rows") from None


def sym_pairs(n_rows: int) -> Tuple[Tuple[int, int], ...]:
    try:
        return SYM_PAIRS[n_rows]
    except KeyError:
        raise Unimplemented(
            f"Symmetrization needs an unreduced gradient (1, 4 or 9 rows), got {n_rows}") from None
