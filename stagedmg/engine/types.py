"""Typed containers and configuration shared by the hierarchy engine.

Containers
----------
HierarchyConfig
    Scalar controls of the construction/solve engine:
      - max_coarse         : stop coarsening once the coarse operator has at most
                             this many rows
      - implicit_transpose : restrict with P^H instead of a stored R
      - is_preconditioner  : suppress per-iteration residual reporting
      - print_info         : print setup summaries and residual histories
      - dump_level         : level index whose dependency graph is dumped (or None)
      - dump_file          : DOT file written by the dump

ManagerConfig
    Choice of producer variants used to build every artifact on a level
    (strength, aggregation, prolongation smoothing, smoothers, coarse solver).

ArtifactSlot
    One entry in a `Level` artifact store: value, availability, outstanding
    request count and keep flags.

Invariants
----------
- `ArtifactSlot.requests` is never negative.
- A slot with `requests == 0` and `keep == KeepFlag.NONE` does not exist in a store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Any

from scipy.sparse import spmatrix
try:
    from scipy.sparse import sparray  # type: ignore
except Exception:  # pragma: no cover
    sparray = spmatrix  # type: ignore

SparseLike = spmatrix | sparray
MethodSpec = str | tuple[str, dict[str, Any]] | None


class CycleType(IntEnum):
    """Number of recursive coarse-grid applications per cycle."""

    V = 1
    W = 2

    @classmethod
    def from_spec(cls, cycle: "CycleType | str | int") -> "CycleType":
        """Normalize 'V'/'W', 1/2 or a CycleType into a CycleType."""
        if isinstance(cycle, str):
            try:
                return cls[cycle.upper()]
            except KeyError as e:
                raise ValueError(f"Unrecognized cycle type: {cycle!r}") from e
        try:
            return cls(int(cycle))
        except ValueError as e:
            raise ValueError(f"Unrecognized cycle type: {cycle!r}") from e


class KeepFlag(IntFlag):
    """Reasons an artifact survives its last release."""

    NONE = 0
    USER = 1
    KEEP = 2


@dataclass(slots=True)
class ArtifactSlot:
    """Storage cell for one (name, producer) artifact on one level."""

    value: Any = None
    available: bool = False
    requests: int = 0
    keep: KeepFlag = KeepFlag.NONE


@dataclass(slots=True, frozen=True)
class HierarchyConfig:
    """Scalar controls of a `Hierarchy`.

    Attributes
    ----------
    max_coarse : int
        Coarsening stops once the coarse operator has at most this many rows.
    implicit_transpose : bool
        If True, restriction is applied as P^H and no "R" artifact is built.
    is_preconditioner : bool
        If True, `iterate` never reports residuals.
    print_info : bool
        Print per-level setup summaries and residual histories.
    dump_level : int | None
        Level whose dependency graph is written to `dump_file` during setup.
    dump_file : str
        Output path of the dependency-graph dump (DOT format).
    """

    max_coarse: int = 50
    implicit_transpose: bool = False
    is_preconditioner: bool = True
    print_info: bool = False
    dump_level: int | None = None
    dump_file: str = "dep_graph.dot"


@dataclass(slots=True, frozen=True)
class ManagerConfig:
    """Producer variants used by a `FactoryManager`.

    Attributes
    ----------
    strength : MethodSpec
        Strength-of-connection method: "symmetric", "classical", "evolution",
        "predefined" (kwargs: C) or None (absolute value of A).
    aggregate : MethodSpec
        Aggregation method: "standard", "naive", "lloyd" or "predefined"
        (kwargs: AggOp). Predefined operators fit only the finest level.
    smooth : MethodSpec
        Prolongation smoother: "jacobi", "richardson" or None (tentative P).
    presmoother, postsmoother : MethodSpec
        Relaxation used before/after coarse-grid correction.
    coarse_solver : MethodSpec
        Direct solver used on the coarsest level (see
        `pyamg.multilevel.coarse_grid_solver`).
    implicit_transpose : bool
        If True, the coarse operator is formed as P^H A P and "R" is never produced.
    """

    strength: MethodSpec = "symmetric"
    aggregate: MethodSpec = "standard"
    smooth: MethodSpec = ("jacobi", {"omega": 4.0 / 3.0})
    presmoother: MethodSpec = ("gauss_seidel", {"sweep": "symmetric"})
    postsmoother: MethodSpec = ("gauss_seidel", {"sweep": "symmetric"})
    coarse_solver: MethodSpec = "splu"
    implicit_transpose: bool = False


def unpack_arg(v: MethodSpec) -> tuple[Any, dict[str, Any]]:
    """Normalize a method spec into (name, kwargs).

    Parameters
    ----------
    v
        Either a string name like "standard", a pair (name, kwargs) like
        ("jacobi", {"omega": 2/3}), or None.

    Returns
    -------
    name, kwargs
        `name` is the method identifier, `kwargs` is a fresh dict of keyword arguments.
    """
    if isinstance(v, tuple):
        return v[0], dict(v[1])
    return v, {}
