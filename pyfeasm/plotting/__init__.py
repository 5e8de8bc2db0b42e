from pyfeasm.plotting.visualization import draw_mesh, draw_sparsity_pattern

__all__ = ["draw_mesh", "draw_sparsity_pattern"]
