# conftest.py
import matplotlib
import numpy as np
import pytest

from pyfeasm.core.mesh import Mesh


@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Switch to a non-interactive backend for all tests."""
    matplotlib.use('Agg')


@pytest.fixture
def unit_triangle():
    """Single right triangle (0,0)-(1,0)-(0,1)."""
    return Mesh(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]), [[0, 1, 2]], cell_type="tri")


@pytest.fixture
def skew_triangle():
    """Single triangle of area 1 with no right angle."""
    return Mesh(np.array([[0.0, 0.0], [2.0, 0.0], [0.5, 1.0]]), [[0, 1, 2]], cell_type="tri")
