import pytest

from pyfeasm.assembly.layouts import (ELASTIC_ROWS, divergence_rows, gradient_layout,
                                      sym_pairs, trace_rows)
from pyfeasm.errors import ConfigurationError, Unimplemented


@pytest.mark.parametrize("dim, n_coeff, elastic, n_out", [
    (1, 1, False, 1), (2, 1, False, 2), (3, 1, False, 3),
    (2, 2, False, 4), (3, 3, False, 9),
    (2, 2, True, 3), (3, 3, True, 6),
])
def test_gradient_rows(dim, n_coeff, elastic, n_out):
    rows, table = gradient_layout(dim, n_coeff, elastic)
    assert rows == n_out
    assert max(r for r, *_ in table) == n_out - 1


def test_vector_gradient_row_order():
    _, table = gradient_layout(3, 3, False)
    # row dim*i + j holds d u_i / d x_j
    assert all(row == 3 * comp + axis for row, comp, axis, _ in table)


def test_elastic_shear_entries():
    _, table = gradient_layout(2, 2, True)
    shear = [(comp, axis) for row, comp, axis, s in table if s]
    assert sorted(shear) == [(0, 1), (1, 0)]
    assert ELASTIC_ROWS[3] == 6


def test_layout_errors():
    with pytest.raises(ConfigurationError):
        gradient_layout(2, 3, False)
    with pytest.raises(ConfigurationError):
        gradient_layout(2, 1, True)
    with pytest.raises(ConfigurationError):
        gradient_layout(0, 1, False)


def test_row_tables():
    assert divergence_rows(2) == (0, 3)
    assert divergence_rows(3) == (0, 4, 8)
    assert trace_rows(9) == (0, 4, 8)
    assert sym_pairs(4) == ((1, 2),)
    with pytest.raises(Unimplemented):
        divergence_rows(4)
    with pytest.raises(Unimplemented):
        trace_rows(3)
    with pytest.raises(Unimplemented):
        sym_pairs(6)
