"""Staged aggregation multigrid: one-call construction of a `Hierarchy`."""

from __future__ import annotations

from warnings import warn

import numpy as np
from scipy.sparse import csr_array, issparse, SparseEfficiencyWarning

from pyamg.util.utils import asfptype, levelize_strength_or_aggregation

from .engine.hierarchy import Hierarchy
from .engine.managers import FactoryManager
from .engine.types import ManagerConfig


def staged_solver(A, B=None, symmetry='hermitian',
                  presmoother=('gauss_seidel', {'sweep': 'symmetric'}),
                  postsmoother=('gauss_seidel', {'sweep': 'symmetric'}),
                  strength='symmetric',
                  aggregate='standard',
                  smooth=('jacobi', {'omega': 4.0/3.0}),
                  coarse_solver='splu',
                  max_levels=10,
                  max_coarse=10,
                  implicit_transpose=False,
                  is_preconditioner=True,
                  print_info=False,
                  dump_level=None,
                  dump_file='dep_graph.dot'):
    """Create a staged multigrid hierarchy for A x = b.

    Parameters
    ----------
    A : csr_array
        Square sparse matrix. Other formats are converted to CSR with a warning.
    B : array_like, optional
        Near-nullspace candidates, shape (n, K). Defaults to the constant vector.
    symmetry : str
        'symmetric', 'hermitian' or 'nonsymmetric'. Stored as `A.symmetry` and
        carried to every coarse operator.
    presmoother, postsmoother : str or tuple
        Relaxation method and keyword arguments, e.g. ('jacobi', {'omega': 2/3}),
        or None to disable smoothing.
    strength : str or tuple
        'symmetric', 'classical', 'evolution', None or
        ('predefined', {'C': ...}) for the finest level only.
    aggregate : str or tuple
        'standard', 'naive', 'lloyd' or ('predefined', {'AggOp': ...}).
        A predefined strength or aggregation describes the finest level only,
        so it limits the hierarchy to two levels.
    smooth : str or tuple
        Prolongation smoother: 'jacobi', 'richardson' or None.
    coarse_solver : str or tuple
        Direct solver of the coarsest level, see `pyamg.multilevel.coarse_grid_solver`.
    max_levels : int
        Maximum number of levels.
    max_coarse : int
        Coarsening stops once a coarse operator has at most this many rows.
    implicit_transpose : bool
        Restrict with P^H instead of a stored R.
    is_preconditioner : bool
        Suppress residual reporting in `Hierarchy.iterate`.
    print_info : bool
        Print per-level setup information.
    dump_level : int or None
        Write the dependency graph around this level to `dump_file` during setup.
    dump_file : str
        Path of the DOT dump.

    Returns
    -------
    Hierarchy
        Fully set up hierarchy.

    Examples
    --------
    >>> import numpy as np
    >>> from pyamg.gallery import poisson
    >>> from stagedmg import staged_solver
    >>> A = poisson((100, 100), format='csr')
    >>> H = staged_solver(A)
    >>> b = np.random.rand(A.shape[0])
    >>> x = H.solve(b, tol=1e-8)
    """
    if not issparse(A) or A.format not in ('csr'):
        try:
            A = csr_array(A)
            warn('Implicit conversion of A to CSR', SparseEfficiencyWarning)
        except Exception as e:
            raise TypeError('Argument A must have type csr_array, '
                            'or be convertible to csr_array') from e

    A = asfptype(A)
    A.eliminate_zeros()
    A.sort_indices()

    if symmetry not in ('symmetric', 'hermitian', 'nonsymmetric'):
        raise ValueError('Expected "symmetric", "nonsymmetric" or "hermitian" '
                         'for the symmetry parameter')
    A.symmetry = symmetry

    if A.shape[0] != A.shape[1]:
        raise ValueError('expected square matrix')

    # Every level shares one strength and one aggregation method, so only the
    # level limits of the levelized parameters are used.
    for spec in (strength, aggregate):
        if isinstance(spec, list):
            raise ValueError('Per-level method lists are not supported')
        max_levels, max_coarse, _ = \
            levelize_strength_or_aggregation(spec, max_levels, max_coarse)

    if B is None:
        B = np.ones((A.shape[0], 1), dtype=A.dtype)
    else:
        B = np.asarray(B, dtype=A.dtype)
        if B.ndim == 1:
            B = B.reshape(-1, 1)
        if B.shape[0] != A.shape[0]:
            raise ValueError('The near null-space modes B have incorrect dimensions for matrix A')

    manager = FactoryManager.from_config(ManagerConfig(
        strength=strength,
        aggregate=aggregate,
        smooth=smooth,
        presmoother=presmoother,
        postsmoother=postsmoother,
        coarse_solver=coarse_solver,
        implicit_transpose=implicit_transpose,
    ))

    H = Hierarchy(A, max_coarse=max_coarse,
                  implicit_transpose=implicit_transpose,
                  is_preconditioner=is_preconditioner,
                  print_info=print_info,
                  dump_level=dump_level,
                  dump_file=dump_file)
    H.get_level(0).set('Nullspace', B)
    H.setup(manager, 0, max_levels)
    return H
