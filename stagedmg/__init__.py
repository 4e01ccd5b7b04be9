"""Staged algebraic multigrid."""
from . import engine
from . import staged
from .engine import FactoryManager, Hierarchy, HierarchyConfig, Level, ManagerConfig
from .staged import staged_solver

__all__ = [
    'engine',
    'staged',
    'staged_solver',
    'FactoryManager',
    'Hierarchy',
    'HierarchyConfig',
    'Level',
    'ManagerConfig',
]
