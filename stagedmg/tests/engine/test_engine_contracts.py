"""Source-level rules for the engine modules and `staged.py`.

Checked on the syntax tree: docstrings on modules and top-level definitions,
output only through `engine/stats.py`, no bare `except`, and levels that
reach their neighbours through the chain instead of stored references.
"""

from __future__ import annotations

import ast
import re
from pathlib import Path

import pytest

PACKAGE = Path(__file__).resolve().parents[2]
SOURCES = [*sorted((PACKAGE / "engine").glob("*.py")), PACKAGE / "staged.py"]


def _tree(path: Path) -> ast.Module:
    return ast.parse(path.read_text(encoding="utf-8"), filename=str(path))


@pytest.mark.parametrize("path", SOURCES, ids=lambda p: p.name)
def test_module_starts_with_docstring(path):
    assert ast.get_docstring(_tree(path)) is not None, f"{path.name}: no module docstring"


@pytest.mark.parametrize("path", SOURCES, ids=lambda p: p.name)
def test_public_definitions_are_documented(path):
    undocumented = [
        f"{node.name}:{node.lineno}"
        for node in _tree(path).body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        and ast.get_docstring(node) is None
    ]
    assert undocumented == [], f"{path.name}: {undocumented}"


@pytest.mark.parametrize("path", SOURCES, ids=lambda p: p.name)
def test_only_stats_module_prints(path):
    if path.name == "stats.py":
        pytest.skip("reporting module")
    printing = [
        node.lineno for node in ast.walk(_tree(path))
        if isinstance(node, ast.Call) and getattr(node.func, "id", None) == "print"
    ]
    assert printing == [], f"{path.name} prints at lines {printing}"


@pytest.mark.parametrize("path", SOURCES, ids=lambda p: p.name)
def test_handlers_name_an_exception(path):
    bare = [node.lineno for node in ast.walk(_tree(path))
            if isinstance(node, ast.ExceptHandler) and node.type is None]
    assert bare == [], f"{path.name}: bare except at lines {bare}"


@pytest.mark.parametrize("path", SOURCES, ids=lambda p: p.name)
def test_levels_hold_no_neighbour_references(path):
    text = path.read_text(encoding="utf-8")
    stored = re.findall(r"\._previous_level\b|\.(?:previous|next)_level\s*=(?!=)", text)
    assert stored == [], f"{path.name} assigns level links: {stored}"
