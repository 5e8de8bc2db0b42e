"""pyfeasm.errors
Exception taxonomy shared by the local builder, the algebra and the batch map.
"""
import numpy as np


class AssemblyError(Exception):
    """Base class of every error raised by pyfeasm."""


class ConfigurationError(AssemblyError, ValueError):
    """Field layout does not fit the entity (e.g. nCoeff vs. spatial dim)."""


class SizeMismatch(AssemblyError, ValueError):
    """Operand shapes or quadrature point counts disagree."""


class Unimplemented(AssemblyError, NotImplementedError):
    """Valid-looking but unsupported operator x coefficient x dimension combination."""


class UninitializedOperator(AssemblyError, RuntimeError):
    """Integration or assembly requested before basis images were filled."""


def _size(obj):
    if hasattr(obj, "shape"):
        return tuple(obj.shape)
    return len(obj)


def assert_size(obj, n, what="operand"):
    """Raise :class:`SizeMismatch` unless ``len(obj) == n``."""
    if len(obj) != n:
        raise SizeMismatch(f"{what}: expected size {n}, got {_size(obj)}")


def assert_equal_size(a, b, what="operands"):
    if len(a) != len(b):
        raise SizeMismatch(f"{what}: sizes differ ({_size(a)} vs {_size(b)})")


def assert_shape(arr, shape, what="matrix"):
    arr = np.asarray(arr)
    if arr.shape != tuple(shape):
        raise SizeMismatch(f"{what}: expected shape {tuple(shape)}, got {arr.shape}")
