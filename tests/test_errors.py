import numpy as np
import pytest

from pyfeasm.errors import (AssemblyError, ConfigurationError, SizeMismatch, Unimplemented,
                            UninitializedOperator, assert_equal_size, assert_shape, assert_size)


@pytest.mark.parametrize("exc, base", [
    (ConfigurationError, ValueError),
    (SizeMismatch, ValueError),
    (Unimplemented, NotImplementedError),
    (UninitializedOperator, RuntimeError),
])
def test_taxonomy(exc, base):
    assert issubclass(exc, AssemblyError) and issubclass(exc, base)


def test_size_helpers():
    assert_size([1, 2], 2)
    assert_equal_size(np.zeros(3), [0, 0, 0])
    assert_shape(np.zeros((2, 3)), (2, 3))
    with pytest.raises(SizeMismatch, match=r"\(4,\)"):
        assert_size(np.zeros(4), 3, "vector")
    with pytest.raises(SizeMismatch):
        assert_equal_size([1], [1, 2])
    with pytest.raises(SizeMismatch, match="matrix"):
        assert_shape(np.eye(2), (3, 3))
