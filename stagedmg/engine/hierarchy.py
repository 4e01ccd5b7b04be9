"""Staged construction and recursive cycling of a multigrid hierarchy.

This module provides `Hierarchy`, which owns the `LevelChain` and
  - builds the levels one at a time (`setup_level`, driven by `setup`) using
    the request/release protocol of `Level`,
  - applies V- and W-cycles over the finished chain (`iterate`, `solve`,
    `aspreconditioner`),
  - reports on and exports the hierarchy (`summary`, `write`,
    `dump_current_graph`).

Setup of one level
------------------
`setup_level(k, fine_manager, coarse_manager, next_manager)`:

  1) on the finest level, request the smoother and the coarse solver
     (either may turn out to be unused);
  2) if coarsening continues, append level k+1 when needed and request its
     coarse operator ("A" via RAP, with "P" and "R"), smoother and coarse solver;
  3) unless k is the finest level, build and publish the operator of level k
     and release its request;
  4) level k is the last one if its operator is null or has at most
     `max_coarse` rows; the requests on level k+1 are then released and
     level k+1 is discarded;
  5) build the smoother of level k, or its coarse solver if it is the last
     level (never both), then release both requests.

Published artifacts
-------------------
Producers store their outputs under their own key `(name, producer)`. Once an
artifact is final the hierarchy copies it to `(name, None)`, which is what
`iterate` reads and what outlives the construction window.
"""

from __future__ import annotations

from typing import Any
from warnings import warn

import numpy as np
from scipy.sparse.linalg import LinearOperator

from .errors import IncompatibleOperands, PreconditionViolation, StructuralInconsistency
from .export import write_dependency_graph, write_level_operators
from .level import Level, LevelChain
from .managers import FactoryManager
from .stats import (
    SetupLevelStats,
    complexities,
    finalize_level_stats,
    format_hierarchy_summary,
    operator_stats,
    print_hierarchy_summary,
    print_level_summary,
    print_residual,
)
from .types import CycleType, HierarchyConfig, KeepFlag


def _publish(level: Level, keys: list[tuple[str, Any]]) -> None:
    """Copy every available producer-keyed artifact to the user key."""
    for name, producer in keys:
        if level.is_available(name, producer):
            level.set(name, level.get(name, producer))


class _TopRAP:
    """Requests, builds and publishes "A", "P" and (unless implicit) "R" of a level."""

    def __init__(self, manager: FactoryManager, implicit_transpose: bool) -> None:
        self.rap = manager.get_producer("A")
        self.p = manager.get_producer("P")
        self.r = None if implicit_transpose else manager.get_producer("R")

    def _keys(self) -> list[tuple[str, Any]]:
        keys = [("A", self.rap), ("P", self.p)]
        if self.r is not None:
            keys.append(("R", self.r))
        return keys

    def request(self, level: Level) -> None:
        for name, producer in self._keys():
            level.request(name, producer)

    def build(self, level: Level) -> None:
        self.rap.call_build(level)
        _publish(level, self._keys())

    def release(self, level: Level) -> None:
        for name, producer in self._keys():
            level.release(name, producer)


class _TopSmoother:
    """Requests, builds and publishes the smoothers made by one manager role.

    `role` is "Smoother" or "CoarseSolver". A manager without that role makes
    this a no-op.
    """

    def __init__(self, manager: FactoryManager, role: str) -> None:
        self.producer = manager.get_producer(role) if manager.has_producer(role) else None

    def _keys(self) -> list[tuple[str, Any]]:
        if self.producer is None:
            return []
        return [("PreSmoother", self.producer), ("PostSmoother", self.producer)]

    def request(self, level: Level) -> None:
        for name, producer in self._keys():
            level.request(name, producer)

    def build(self, level: Level) -> None:
        if self.producer is None:
            return
        self.producer.call_build(level)
        _publish(level, self._keys())

    def release(self, level: Level) -> None:
        for name, producer in self._keys():
            level.release(name, producer)


class Hierarchy:
    """Chain of multigrid levels together with its construction and solve engine.

    Parameters
    ----------
    A
        Optional finest-level operator; stored as "A" on level 0.
    max_coarse
        Coarsening stops once a coarse operator has at most this many rows.
    implicit_transpose
        Restrict with P^H instead of a stored "R".
    is_preconditioner
        If True, `iterate` never reports residuals.
    print_info
        Print per-level setup summaries and, unless `is_preconditioner`,
        residual histories.
    dump_level
        Level whose dependency graph is written to `dump_file` during setup.
    dump_file
        Path of the DOT dependency-graph dump.

    Examples
    --------
    >>> import numpy as np
    >>> from pyamg.gallery import poisson
    >>> from stagedmg.engine import FactoryManager, Hierarchy
    >>> A = poisson((100,), format='csr')
    >>> H = Hierarchy(A, max_coarse=10)
    >>> H.setup(FactoryManager.from_config())
    >>> b = np.ones(A.shape[0])
    >>> x = np.zeros(A.shape[0])
    >>> H.iterate(b, 10, x, initial_guess_is_zero=True)
    """

    def __init__(self, A: Any = None, *, max_coarse: int = 50, implicit_transpose: bool = False,
                 is_preconditioner: bool = True, print_info: bool = False,
                 dump_level: int | None = None, dump_file: str = "dep_graph.dot") -> None:
        self.max_coarse = max_coarse
        self.implicit_transpose = implicit_transpose
        self.is_preconditioner = is_preconditioner
        self.print_info = print_info
        self.dump_level = dump_level
        self.dump_file = dump_file
        self.setup_stats: list[SetupLevelStats] = []

        self._levels = LevelChain()
        self.add_level(Level())
        if A is not None:
            self._levels[0].set("A", A)

    @classmethod
    def from_config(cls, A: Any = None, config: HierarchyConfig | None = None) -> "Hierarchy":
        """Construct a hierarchy from a `HierarchyConfig`."""
        if config is None:
            config = HierarchyConfig()
        return cls(A, max_coarse=config.max_coarse,
                   implicit_transpose=config.implicit_transpose,
                   is_preconditioner=config.is_preconditioner,
                   print_info=config.print_info,
                   dump_level=config.dump_level,
                   dump_file=config.dump_file)

    # ---- structure ----

    @property
    def levels(self) -> list[Level]:
        """Levels of the hierarchy, finest first."""
        return list(self._levels)

    @property
    def num_levels(self) -> int:
        """Number of levels in the chain."""
        return len(self._levels)

    @property
    def last_level_id(self) -> int:
        """ID of the coarsest level."""
        return self._levels.last_level_id

    def __len__(self) -> int:
        return len(self._levels)

    def add_level(self, level: Level) -> int:
        """Append `level`, assigning it the next ID and linking it to its finer neighbour."""
        return self._levels.append(level)

    def add_new_level(self) -> int:
        """Append a new empty level derived from the current coarsest one."""
        return self.add_level(self._levels[self.last_level_id].build())

    def get_level(self, level_id: int = 0) -> Level:
        """Return level `level_id`."""
        if level_id < 0 or level_id > self.last_level_id:
            raise PreconditionViolation(
                f"Level {level_id} does not exist (hierarchy has {len(self._levels)} level(s))")
        return self._levels[level_id]

    def check_level(self, level: Level, level_id: int) -> None:
        """Verify the ID and the finer-neighbour link of `level`."""
        if level.level_id != level_id:
            raise StructuralInconsistency(
                f"Wrong level ID: expected {level_id}, found {level.level_id}")
        if level_id > 0 and level.previous_level is not self._levels[level_id - 1]:
            raise StructuralInconsistency(
                f"Wrong previous level for level {level_id}")

    # ---- keep flags ----

    def keep(self, name: str, producer: Any = None) -> None:
        """Keep an artifact on every level (levels added later inherit the flag)."""
        for level in self._levels:
            level.keep(name, producer)

    def delete(self, name: str, producer: Any = None) -> None:
        """Drop an artifact from every level."""
        for level in self._levels:
            level.delete(name, producer)

    def add_keep_flag(self, name: str, producer: Any = None,
                      flag: KeepFlag = KeepFlag.KEEP) -> None:
        """Add a keep flag to an artifact on every level."""
        for level in self._levels:
            level.add_keep_flag(name, producer, flag)

    def remove_keep_flag(self, name: str, producer: Any = None,
                         flag: KeepFlag = KeepFlag.KEEP) -> None:
        """Remove a keep flag from an artifact on every level."""
        for level in self._levels:
            level.remove_keep_flag(name, producer, flag)

    # ---- setup ----

    def setup_level(self, coarse_level_id: int, fine_manager: FactoryManager | None,
                    coarse_manager: FactoryManager, next_manager: FactoryManager | None) -> bool:
        """Build level `coarse_level_id` and prepare the next one.

        Parameters
        ----------
        coarse_level_id
            Level to build. It must already be in the chain.
        fine_manager
            Manager of the finer level; None marks `coarse_level_id` as the finest level.
        coarse_manager
            Manager used to build this level.
        next_manager
            Manager of the next coarser level; None stops coarsening here.

        Returns
        -------
        is_last
            True if `coarse_level_id` is the coarsest level.
        """
        if coarse_manager is None:
            raise PreconditionViolation("A coarse-level manager is required")
        if coarse_level_id < 0 or coarse_level_id > self.last_level_id:
            raise PreconditionViolation(
                f"Level {coarse_level_id} must be added to the hierarchy before its setup")

        level = self._levels[coarse_level_id]
        self.check_level(level, coarse_level_id)

        is_finest = fine_manager is None
        is_last = next_manager is None
        next_id = coarse_level_id + 1
        stats = SetupLevelStats(level=coarse_level_id)

        # 1) speculative requests on the finest level
        if is_finest:
            _TopSmoother(coarse_manager, "Smoother").request(level)
            _TopSmoother(coarse_manager, "CoarseSolver").request(level)

        if self.dump_level == 0 and coarse_level_id == 1:
            self.dump_current_graph()

        # 2) requests for the next coarse level
        next_level = None
        next_tops: tuple[Any, ...] = ()
        if not is_last:
            if next_id > self.last_level_id:
                self.add_new_level()
            next_level = self._levels[next_id]
            self.check_level(next_level, next_id)
            next_tops = (
                _TopRAP(next_manager, self.implicit_transpose),
                _TopSmoother(next_manager, "Smoother"),
                _TopSmoother(next_manager, "CoarseSolver"),
            )
            for top in next_tops:
                top.request(next_level)

        # 3) coarse operator of this level
        if not is_finest:
            rap = _TopRAP(coarse_manager, self.implicit_transpose)
            with stats.timeit("rap"):
                rap.build(level)
            rap.release(level)

        if self.dump_level is not None and self.dump_level > 0 \
                and coarse_level_id == self.dump_level:
            self.dump_current_graph()

        # 4) termination
        Ac = level.get("A") if level.is_available("A") else None
        if Ac is None or Ac.shape[0] <= self.max_coarse:
            if next_level is not None:
                for top in next_tops:
                    top.release(next_level)
                self._levels.pop()
            is_last = True

        # 5) smoother or coarse solver
        smoother = _TopSmoother(coarse_manager, "Smoother")
        coarse_solver = _TopSmoother(coarse_manager, "CoarseSolver")
        if not is_last:
            with stats.timeit("smoother"):
                smoother.build(level)
        elif Ac is not None:
            with stats.timeit("coarse_solver"):
                coarse_solver.build(level)
        smoother.release(level)
        coarse_solver.release(level)

        finalize_level_stats(stats=stats, level=level, is_last=is_last)
        self.setup_stats.append(stats)
        print_level_summary(stats, print_info=self.print_info)
        return is_last

    def setup(self, manager: FactoryManager, start_level: int = 0,
              num_desired_levels: int = 10) -> None:
        """Build the hierarchy from `start_level` with one manager for every level.

        Coarsening stops after `num_desired_levels` levels or once a coarse
        operator is small enough (see `max_coarse`), whichever comes first.
        """
        if num_desired_levels < 2:
            raise PreconditionViolation("num_desired_levels must be at least 2")
        if start_level < 0 or start_level > self.last_level_id:
            raise PreconditionViolation(f"Level {start_level} does not exist")
        if not self._levels[start_level].is_available("A"):
            raise PreconditionViolation(
                "No fine level operator A; set it with Level.set('A', A)")
        if manager.implicit_transpose != self.implicit_transpose:
            raise PreconditionViolation(
                f"The manager builds the coarse operator with implicit_transpose="
                f"{manager.implicit_transpose}, the hierarchy expects {self.implicit_transpose}")

        self.setup_stats = []
        last_level = start_level + num_desired_levels - 1
        i_level = start_level

        is_last = self.setup_level(start_level, None, manager, manager)
        if not is_last:
            for i_level in range(start_level + 1, last_level):
                if self.setup_level(i_level, manager, manager, manager):
                    break
            else:
                i_level = last_level
                self.setup_level(last_level, manager, manager, None)

        if len(self._levels) != i_level + 1:
            raise StructuralInconsistency(
                f"Hierarchy has {len(self._levels)} level(s) after setup, expected {i_level + 1}")

        if self.print_info:
            print_hierarchy_summary(self.summary(), print_info=True)

    # ---- solve ----

    @staticmethod
    def _check_operands(A: Any, b: np.ndarray, x: np.ndarray, level_id: int) -> None:
        if not isinstance(x, np.ndarray) or x.shape[0] != A.shape[1] or x.dtype != A.dtype:
            raise IncompatibleOperands(
                f"Level {level_id}: level A's domain is not compatible with x")
        if b.shape[0] != A.shape[0] or b.shape[1:] != x.shape[1:]:
            raise IncompatibleOperands(
                f"Level {level_id}: level A's range is not compatible with b")

    @staticmethod
    def _smoother(level: Level, name: str) -> Any:
        return level.get(name) if level.is_available(name) else None

    def iterate(self, b: np.ndarray, n_iterations: int, x: np.ndarray,
                initial_guess_is_zero: bool = False, cycle: CycleType | str | int = "V",
                start_level: int = 0) -> None:
        """Apply `n_iterations` multigrid cycles to A x = b in place.

        Parameters
        ----------
        b
            Right-hand side on `start_level`.
        n_iterations
            Number of cycles.
        x
            Solution vector, updated in place. Must have the operator's dtype.
        initial_guess_is_zero
            Treat `x` as zero on entry.
        cycle
            "V" (one coarse-grid visit per level) or "W" (two).
        start_level
            Level to start the cycle on.

        Notes
        -----
        Returns immediately if the operator of `start_level` is null.
        """
        cycle = CycleType.from_spec(cycle)
        level = self.get_level(start_level)
        A = level.get("A") if level.is_available("A") else None
        if A is None:
            return

        b = np.asarray(b)
        report = start_level == 0 and self.print_info and not self.is_preconditioner
        if report:
            self._check_operands(A, b, x, start_level)
            print_residual(0, float(np.linalg.norm(b - A @ x)))

        zero_guess = initial_guess_is_zero
        for i in range(1, n_iterations + 1):
            self._check_operands(A, b, x, start_level)

            if start_level == self.last_level_id:
                pre = self._smoother(level, "PreSmoother")
                post = self._smoother(level, "PostSmoother")
                if pre is not None:
                    pre.apply(x, b, zero_guess)
                    zero_guess = False
                if post is not None:
                    post.apply(x, b, zero_guess)
                if pre is None and post is None:
                    warn("No coarse grid solver")
            else:
                coarse = self._levels[start_level + 1]

                pre = self._smoother(level, "PreSmoother")
                if pre is not None:
                    pre.apply(x, b, zero_guess)
                else:
                    warn(f"Level {start_level}: No PreSmoother!")

                residual = b - A @ x
                P = coarse.get("P")
                if self.implicit_transpose:
                    coarse_b = P.T.conjugate() @ residual
                else:
                    coarse_b = coarse.get("R") @ residual

                Ac = coarse.get("A") if coarse.is_available("A") else None
                if Ac is not None:
                    coarse_x = np.zeros(coarse_b.shape, dtype=Ac.dtype)
                    self.iterate(coarse_b, 1, coarse_x, True, cycle, start_level + 1)
                    if cycle > CycleType.V:
                        self.iterate(coarse_b, 1, coarse_x, False, cycle, start_level + 1)
                    x += P @ coarse_x

                post = self._smoother(level, "PostSmoother")
                if post is not None:
                    post.apply(x, b, False)
                else:
                    warn(f"Level {start_level}: No PostSmoother!")

            zero_guess = False

            if report:
                print_residual(i, float(np.linalg.norm(b - A @ x)))

    def solve(self, b: np.ndarray, x0: np.ndarray | None = None, tol: float = 1e-5,
              maxiter: int = 100, cycle: CycleType | str | int = "V",
              residuals: list | None = None) -> np.ndarray:
        """Iterate cycles until the relative residual drops below `tol`.

        Parameters
        ----------
        b
            Right-hand side.
        x0
            Initial guess (zero if None). Not modified.
        tol
            Stopping tolerance on ||b - A x|| / ||b||.
        maxiter
            Maximum number of cycles.
        cycle
            "V" or "W".
        residuals
            If a list, it is filled with the residual norm history.

        Returns
        -------
        x
            Approximate solution with the shape of `b`.
        """
        A = self._levels[0].get("A")
        b = np.asarray(b, dtype=A.dtype)
        if x0 is None:
            x = np.zeros_like(b)
        else:
            x = np.array(x0, dtype=A.dtype).reshape(b.shape)

        normb = np.linalg.norm(b)
        if normb == 0.0:
            normb = 1.0

        resid = float(np.linalg.norm(b - A @ x))
        if residuals is not None:
            residuals[:] = [resid]

        it = 0
        while it < maxiter and resid > tol * normb:
            self.iterate(b, 1, x, initial_guess_is_zero=(it == 0 and x0 is None), cycle=cycle)
            it += 1
            resid = float(np.linalg.norm(b - A @ x))
            if residuals is not None:
                residuals.append(resid)
        return x

    def aspreconditioner(self, cycle: CycleType | str | int = "V") -> LinearOperator:
        """Return one cycle with a zero initial guess as a `LinearOperator`.

        Examples
        --------
        >>> from scipy.sparse.linalg import cg
        >>> M = H.aspreconditioner(cycle='V')
        >>> x, info = cg(A, b, rtol=1e-8, M=M)
        """
        A = self._levels[0].get("A")
        dtype = A.dtype

        def matvec(b):
            b = np.asarray(b, dtype=dtype).reshape(-1)
            x = np.zeros_like(b)
            self.iterate(b, 1, x, initial_guess_is_zero=True, cycle=cycle)
            return x

        return LinearOperator(A.shape, matvec=matvec, dtype=dtype)

    # ---- reporting / export ----

    def operator_complexity(self) -> float:
        """Sum of nonzeros over all level operators divided by those of the finest one."""
        return complexities(*operator_stats(self._levels))[0]

    def grid_complexity(self) -> float:
        """Sum of rows over all level operators divided by those of the finest one."""
        return complexities(*operator_stats(self._levels))[1]

    def summary(self, verbose: bool = False) -> str:
        """Return the multigrid summary table (see `stats.format_hierarchy_summary`)."""
        return format_hierarchy_summary(levels=self.levels, max_coarse=self.max_coarse,
                                        implicit_transpose=self.implicit_transpose,
                                        verbose=verbose)

    def describe(self) -> str:
        """Short description with the number of levels."""
        return f"Hierarchy{{numLevels = {len(self._levels)}}}"

    def __repr__(self) -> str:
        if all(level.is_available("A") for level in self._levels):
            return self.summary()
        return self.describe()

    def write(self, start: int = -1, end: int = -1, directory: str = ".") -> list[str]:
        """Write A_i, P_i and R_i of levels start..end (-1: first/last) as Matrix Market files."""
        return write_level_operators(self.levels, start=start, end=end,
                                     implicit_transpose=self.implicit_transpose,
                                     directory=directory)

    def dump_current_graph(self) -> str:
        """Write the dependency graph of levels `dump_level` and `dump_level + 1` to `dump_file`."""
        if self.dump_level is None:
            raise PreconditionViolation("dump_level is not set")
        return write_dependency_graph(self.levels, self.dump_level, self.dump_file)
