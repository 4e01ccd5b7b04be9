"""Timing and diagnostic reporting for hierarchy setup and cycling.

This module provides:
  - A small per-level timing collector (`SetupLevelStats`) that supports labeled timers.
  - Operator statistics over a finished hierarchy (rows, nonzeros, complexities).
  - Compact, human-readable summaries of levels and of the whole hierarchy.
  - The residual line printed by `Hierarchy.iterate`.

Typical usage
-------------
Within `Hierarchy.setup_level`, create a `SetupLevelStats` for the level being built:

    stats = SetupLevelStats(level=ell)
    with stats.timeit("rap"):
        ... build the coarse operator ...
    with stats.timeit("smoother"):
        ... build the smoother ...
    finalize_level_stats(stats=stats, level=level, is_last=...)
    print_level_summary(stats, print_info=print_info)

All printing of the package happens in this module.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable
import time


@dataclass(slots=True)
class SetupLevelStats:
    """Per-level setup timings and summary statistics.

    Attributes
    ----------
    level
        Multigrid level index (0 = finest).
    n_rows
        Rows of the level operator (filled in finalize; None for a null operator).
    nnz
        Stored entries of the level operator (filled in finalize).
    is_last
        Whether the level turned out to be the coarsest one.
    timings
        Dict mapping timer keys to elapsed seconds.
    extra
        Dict for derived metrics (nnz per row, smoother descriptions, ...).
    """

    level: int
    n_rows: int | None = None
    nnz: int | None = None
    is_last: bool = False
    timings: dict[str, float] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @contextmanager
    def timeit(self, key: str):
        """Context manager that accumulates elapsed time under `timings[key]`."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.timings[key] = self.timings.get(key, 0.0) + (time.perf_counter() - t0)


def _describe(obj: Any) -> str:
    """Description of a smoother-like object."""
    describe = getattr(obj, "description", None)
    return describe() if callable(describe) else type(obj).__name__


def smoother_descriptions(level: Any) -> dict[str, str]:
    """Describe the published smoothers of a level as {"both"|"pre"|"post": text}."""
    pre = level.get("PreSmoother") if level.is_available("PreSmoother") else None
    post = level.get("PostSmoother") if level.is_available("PostSmoother") else None
    if pre is not None and pre is post:
        return {"both": _describe(pre)}
    out = {}
    if pre is not None:
        out["pre"] = _describe(pre)
    if post is not None:
        out["post"] = _describe(post)
    return out


def finalize_level_stats(*, stats: SetupLevelStats, level: Any, is_last: bool) -> None:
    """Populate operator size and smoother information for a finished level.

    Side effects
    ------------
    - Updates `stats.n_rows`, `stats.nnz`, `stats.is_last` and `stats.extra`.
    """
    stats.is_last = is_last
    A = level.get("A") if level.is_available("A") else None
    if A is not None:
        stats.n_rows = int(A.shape[0])
        stats.nnz = int(A.nnz)
        stats.extra["nnz_per_row"] = stats.nnz / stats.n_rows if stats.n_rows else 0.0
    stats.extra["smoothers"] = smoother_descriptions(level)


def operator_stats(levels: Iterable[Any]) -> tuple[list[int], list[int]]:
    """Rows and nonzeros of each level operator, stopping at the first null operator.

    Raises
    ------
    ValueError
        If a level has no published operator "A".
    """
    rows: list[int] = []
    nnz: list[int] = []
    for level in levels:
        if not level.is_available("A"):
            raise ValueError(
                f"Operator complexity cannot be calculated because A is unavailable "
                f"on level {level.level_id}")
        A = level.get("A")
        if A is None:
            break
        rows.append(int(A.shape[0]))
        nnz.append(int(A.nnz))
    return rows, nnz


def complexities(rows: list[int], nnz: list[int]) -> tuple[float, float]:
    """Return (operator complexity, grid complexity) relative to the finest level."""
    if not rows or nnz[0] == 0:
        return float("nan"), float("nan")
    return sum(nnz) / nnz[0], sum(rows) / rows[0]


def _fmt_ms(t: float) -> str:
    """Format a duration in seconds as either milliseconds or seconds."""
    return f"{t*1e3:7.1f}ms" if t < 1.0 else f"{t:7.2f}s"


def print_level_summary(stats: SetupLevelStats, *, print_info: bool, indent: str = "") -> None:
    """Print a compact summary of one level once its setup is complete.

    Parameters
    ----------
    stats
        Per-level stats object that has already been finalized.
    print_info
        If False, does nothing.
    indent
        Optional indentation string.
    """
    if not print_info:
        return

    n = stats.n_rows if stats.n_rows is not None else "null"
    kind = "coarsest" if stats.is_last else "smoothed"
    print(f"{indent}Level {stats.level:<2d}  n={n!s:<8} nnz={stats.nnz!s:<9} ({kind})")
    if "nnz_per_row" in stats.extra:
        print(f"{indent}     nnz/row : {stats.extra['nnz_per_row']:.2f}")
    for which, text in stats.extra.get("smoothers", {}).items():
        print(f"{indent}     {which:<7} : {text}")

    total = 0.0
    print(f"{indent}     timing:")
    for k in ("rap", "smoother", "coarse_solver"):
        if k in stats.timings:
            v = stats.timings[k]
            total += v
            print(f"{indent}       {k:<13} {_fmt_ms(v)}")
    print(f"{indent}       {'total':<13} {_fmt_ms(total)}")


def format_hierarchy_summary(
    *,
    levels: list[Any],
    max_coarse: int,
    implicit_transpose: bool,
    verbose: bool = False,
) -> str:
    """Return the multigrid summary table of a hierarchy.

    The table lists rows and nonzeros of every level operator together with
    operator and grid complexity. With `verbose`, the nnz/row column and the
    per-level smoothers are included.
    """
    rows, nnz = operator_stats(levels)
    op_c, grid_c = complexities(rows, nnz)
    total = sum(nnz)

    out = ["Multigrid Summary"]
    out.append(f"Number of Levels:     {len(levels)}")
    out.append(f"Operator Complexity: {op_c:6.3f}")
    out.append(f"Grid Complexity:     {grid_c:6.3f}")
    out.append(f"Max Coarse Size:      {max_coarse}")
    out.append(f"Implicit Transpose:   {'true' if implicit_transpose else 'false'}")
    out.append("  level   unknowns     nonzeros" + ("   nnz/row" if verbose else ""))
    for i, (n, z) in enumerate(zip(rows, nnz)):
        share = 100.0 * z / total if total else 0.0
        line = f"{i:>6} {n:>11} {z:>12} [{share:5.2f}%]"
        if verbose:
            line += f" {z / n if n else 0.0:9.2f}"
        out.append(line)

    if verbose:
        for i, level in enumerate(levels):
            for which, text in smoother_descriptions(level).items():
                out.append(f"Smoother (level {i}) {which:<4} : {text}")
    return "\n".join(out)


def print_hierarchy_summary(text: str, *, print_info: bool) -> None:
    """Print a summary produced by `format_hierarchy_summary`."""
    if not print_info:
        return
    print(text)


def print_residual(iteration: int, norm: float) -> None:
    """Print one line of the residual history of `Hierarchy.iterate`."""
    print(f"iter:    {iteration:<3d}           residual = {norm:.10g}")
