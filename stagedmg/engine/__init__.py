"""Staged multigrid hierarchy engine.

This package contains the level store, the artifact producers and the
hierarchy that assembles and cycles over them.

Modules
-------
types
    Configuration dataclasses, cycle types, keep flags and artifact slots.
errors
    Exception kinds raised by the engine.
level
    Per-level artifact store with request/release counting, and the level chain.
producers
    Producer base class plus RAP, restriction, smoother and coarse-solver producers.
aggregation
    Strength-of-connection, aggregation and prolongation (`TransferProducer`).
smoothers
    Relaxation smoothers and direct coarse solvers applied during a cycle.
managers
    `FactoryManager`: artifact name -> producer.
hierarchy
    `Hierarchy`: staged setup, V/W cycles, solve and preconditioner.
stats
    Per-level timing and diagnostic reporting.
export
    Matrix Market export and dependency-graph dump.
"""

from __future__ import annotations

from . import aggregation, errors, export, hierarchy, level, managers, producers, smoothers, stats, types
from .errors import (
    IncompatibleOperands,
    NotAvailable,
    PreconditionViolation,
    StagedMGError,
    StructuralInconsistency,
)
from .hierarchy import Hierarchy
from .level import Level, LevelChain
from .managers import FactoryManager
from .types import CycleType, HierarchyConfig, KeepFlag, ManagerConfig

__all__ = [
    "aggregation",
    "errors",
    "export",
    "hierarchy",
    "level",
    "managers",
    "producers",
    "smoothers",
    "stats",
    "types",
    "CycleType",
    "FactoryManager",
    "Hierarchy",
    "HierarchyConfig",
    "IncompatibleOperands",
    "KeepFlag",
    "Level",
    "LevelChain",
    "ManagerConfig",
    "NotAvailable",
    "PreconditionViolation",
    "StagedMGError",
    "StructuralInconsistency",
]
