"""pyfeasm
Element-local operator construction and global sparse assembly.
"""
from pyfeasm.errors import (AssemblyError, ConfigurationError, SizeMismatch,
                            Unimplemented, UninitializedOperator)
from pyfeasm.config import AssemblyConfig, get_config, set_config, config_override
from pyfeasm.core.mesh import Mesh
from pyfeasm.assembly.element_matrix import ElementMatrix, IntegratedOperator
from pyfeasm.assembly.element_map import (ElementMatrixMap, create_value_map,
                                          create_gradient_map, create_identity_map)
from pyfeasm.assembly.sparse import SparseMapMatrix, SparseMatrix

__all__ = [
    "AssemblyError", "ConfigurationError", "SizeMismatch", "Unimplemented",
    "UninitializedOperator", "AssemblyConfig", "get_config", "set_config",
    "config_override", "Mesh", "ElementMatrix", "IntegratedOperator",
    "ElementMatrixMap", "create_value_map", "create_gradient_map",
    "create_identity_map", "SparseMapMatrix", "SparseMatrix",
]
