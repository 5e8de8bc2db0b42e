from functools import lru_cache
import sympy as sp

r_sym, s_sym, t_sym = sp.symbols("r s t")
_SYMS = (r_sym, s_sym, t_sym)


@lru_cache(maxsize=None)
def lagrange_basis(nodes, monomials, dim: int):
    """
    Return lambdified nodal Lagrange shape functions and first derivatives.

    Args:
        nodes: Tuple of reference-node coordinates (each a tuple of length dim,
               given as sympy Rationals so the Vandermonde solve is exact).
        monomials: Tuple of exponent tuples spanning the polynomial space,
                   one per node.
        dim: Reference dimension (1, 2 or 3).

    Returns:
        tuple: (shape_lambda, deriv_lambdas)
            - shape_lambda: callable (r, s, t) -> column of N_i values.
            - deriv_lambdas: list, one callable per reference axis, giving dN_i/dL_axis.
    """
    num_nodes = len(nodes)
    if len(monomials) != num_nodes:
        raise RuntimeError(f"Mismatch between number of nodes ({num_nodes}) "
                           f"and number of monomials ({len(monomials)}).")

    syms = _SYMS[:dim]
    monomials_sym = [sp.Mul(*[x**p for x, p in zip(syms, powers)]) for powers in monomials]

    # V[i, j] = m_j(node_i); N = m^T (V^T)^-1 gives N_k(node_i) = delta_ki
    V_matrix = sp.zeros(num_nodes, num_nodes)
    for i_node, coords in enumerate(nodes):
        subs = {x: c for x, c in zip(syms, coords)}
        for j_monomial, monomial in enumerate(monomials_sym):
            V_matrix[i_node, j_monomial] = sp.sympify(monomial).subs(subs)
    try:
        coeffs_matrix = V_matrix.T.inv()
    except ValueError as e:
        raise RuntimeError(f"Vandermonde matrix is singular for {num_nodes}-node basis: {e}")

    monomials_col = sp.Matrix(monomials_sym)
    basis_sym = [sp.expand((coeffs_matrix.row(k) * monomials_col)[0, 0])
                 for k in range(num_nodes)]

    args = _SYMS
    shape_lambda = sp.lambdify(args, sp.Matrix(basis_sym), "numpy")
    deriv_lambdas = [sp.lambdify(args, sp.Matrix([sp.diff(phi, x) for phi in basis_sym]), "numpy")
                     for x in syms]
    return shape_lambda, deriv_lambdas
