"""Smoother and coarse-solver objects applied during a multigrid cycle.

This module maps short-hand smoother specifications to objects with a common
`apply(x, b, zero_guess)` interface consumed by `Hierarchy.iterate`.

Supported relaxation methods
----------------------------
- "gauss_seidel" : `pyamg.relaxation.relaxation.gauss_seidel` (kwargs: iterations, sweep)
- "jacobi"       : `pyamg.relaxation.relaxation.jacobi`       (kwargs: iterations, omega)
- "sor"          : `pyamg.relaxation.relaxation.sor`          (kwargs: omega, iterations, sweep)
- "schwarz"      : `pyamg.relaxation.relaxation.schwarz`      (overlapping subdomains from A's graph)
- None           : disable smoothing on this level

Coarse solvers are direct solves built by `pyamg.multilevel.coarse_grid_solver`
("splu", "lu", "pinv", "cholesky", ...).

All smoothers update `x` in place; `x` must be a C-contiguous array with the
operator's dtype.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from pyamg.multilevel import coarse_grid_solver
from pyamg.relaxation import relaxation

from .types import MethodSpec, SparseLike, unpack_arg

_RELAXATION = {
    "gauss_seidel": relaxation.gauss_seidel,
    "jacobi": relaxation.jacobi,
    "sor": relaxation.sor,
    "schwarz": relaxation.schwarz,
}


class RelaxationSmoother:
    """Stationary relaxation applied in place.

    Parameters
    ----------
    A
        CSR operator of the level.
    method
        One of the keys of the supported relaxation table.
    **kwargs
        Passed through to the pyamg relaxation routine on every application.
    """

    def __init__(self, A: SparseLike, method: str, **kwargs: Any) -> None:
        if method not in _RELAXATION:
            raise ValueError(f"Invalid smoother type: {method!r}")
        if method == "sor":
            kwargs.setdefault("omega", 1.0)
        self.A = A
        self.method = method
        self.kwargs = kwargs
        self._relax = _RELAXATION[method]

    def apply(self, x: np.ndarray, b: np.ndarray, zero_guess: bool = False) -> None:
        """Relax A x = b in place, starting from zero if `zero_guess`."""
        if zero_guess:
            x[...] = 0
        self._relax(self.A, x, np.asarray(b, dtype=x.dtype), **self.kwargs)

    def description(self) -> str:
        """One-line description used in hierarchy summaries."""
        if not self.kwargs:
            return self.method
        args = ", ".join(f"{k}={v}" for k, v in sorted(self.kwargs.items()))
        return f"{self.method}({args})"


class DirectSolver:
    """Direct solve of the coarsest system, applied in place.

    With a nonzero initial guess the solve is applied to the residual and
    added to `x`, so a second application is (up to round-off) a no-op.
    """

    def __init__(self, A: SparseLike, solver: str = "splu", **kwargs: Any) -> None:
        self.A = A
        self.solver = solver
        self.kwargs = kwargs
        self._solve = coarse_grid_solver((solver, kwargs) if kwargs else solver)

    def apply(self, x: np.ndarray, b: np.ndarray, zero_guess: bool = False) -> None:
        """Solve A x = b in place."""
        if zero_guess:
            x[...] = np.reshape(self._solve(self.A, b), x.shape)
        else:
            r = b - self.A @ x
            x += np.reshape(self._solve(self.A, r), x.shape)

    def description(self) -> str:
        """One-line description used in hierarchy summaries."""
        return f"direct solve ({self.solver})"


def make_smoother(A: SparseLike, spec: MethodSpec) -> RelaxationSmoother | None:
    """Return a relaxation smoother for `A` from a method spec, or None to disable smoothing.

    Raises
    ------
    ValueError
        If an unsupported smoother name is provided.
    """
    name, kwargs = unpack_arg(spec)
    if name is None:
        return None
    return RelaxationSmoother(A, name, **kwargs)


def make_coarse_solver(A: SparseLike, spec: MethodSpec) -> DirectSolver:
    """Return a direct coarse-grid solver for `A` from a method spec."""
    name, kwargs = unpack_arg(spec)
    if name is None:
        name = "splu"
    return DirectSolver(A, name, **kwargs)
