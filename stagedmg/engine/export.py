"""Diagnostic output of a hierarchy: operator files and the dependency graph.

Neither routine changes any level; both only read published artifacts and
request counts.

write_level_operators
    Matrix Market files "A_i.mtx", "P_i.mtx" and "R_i.mtx" (one artifact per
    file) for a range of levels.
dependency_graph, write_dependency_graph
    networkx graph (and its Graphviz DOT file) of which producer currently
    holds which artifact on levels `dump_level` and `dump_level + 1`.
"""

from __future__ import annotations

import os
from typing import Any, Sequence

import networkx as nx
from scipy.io import mmwrite

from .errors import PreconditionViolation


def level_range(n_levels: int, start: int = -1, end: int = -1) -> range:
    """Resolve a [start, end] level range where -1 means first/last level.

    Raises
    ------
    PreconditionViolation
        If start > end or the range leaves the hierarchy.
    """
    if start == -1:
        start = 0
    if end == -1:
        end = n_levels - 1
    if start > end:
        raise PreconditionViolation(f"start level {start} must be <= end level {end}")
    if start < 0 or end >= n_levels:
        raise PreconditionViolation(
            f"bad start or end level ({start}, {end}) for {n_levels} level(s)")
    return range(start, end + 1)


def write_level_operators(
    levels: Sequence[Any],
    *,
    start: int = -1,
    end: int = -1,
    implicit_transpose: bool = False,
    directory: str = ".",
) -> list[str]:
    """Write A_i (and P_i, R_i for i > start) in Matrix Market format.

    R_i is skipped when the hierarchy restricts with P^H.

    Returns
    -------
    paths
        Written file paths, in order.
    """
    transfer = ["P"] if implicit_transpose else ["P", "R"]

    paths: list[str] = []
    rng = level_range(len(levels), start, end)
    for i in rng:
        level = levels[i]
        wanted = ["A"] if i == rng.start else ["A", *transfer]
        for name in wanted:
            path = os.path.join(directory, f"{name}_{i}.mtx")
            mmwrite(path, level.get(name))
            paths.append(path)
    return paths


def _producer_label(producer: Any) -> str:
    """Vertex label of a producer ("user" for directly set data)."""
    return "user" if producer is None else type(producer).__name__


def dependency_graph(levels: Sequence[Any], dump_level: int) -> nx.MultiDiGraph:
    """Return the dependency graph around `dump_level`.

    Nodes are consecutive integers with a "label" attribute, one per level
    and one per producer (shared across levels). Each stored artifact adds an
    edge producer -> level with attributes "label" (artifact name and request
    count) and "color" ("red" on `dump_level`, "blue" on `dump_level + 1`).
    """
    G = nx.MultiDiGraph()
    node_of: dict[int, int] = {}

    def node(key: Any, label: str) -> int:
        if id(key) not in node_of:
            node_of[id(key)] = G.number_of_nodes()
            G.add_node(node_of[id(key)], label=label)
        return node_of[id(key)]

    for i in range(dump_level, min(dump_level + 2, len(levels))):
        level = levels[i]
        color = "red" if i == dump_level else "blue"
        target = node(level, f"Level {i}")
        for (name, producer), slot in level.slots():
            source = node(producer, _producer_label(producer))
            label = f"{name} ({slot.requests})" if slot.requests else name
            G.add_edge(source, target, label=label, color=color)
    return G


def format_dependency_graph(levels: Sequence[Any], dump_level: int) -> str:
    """Return `dependency_graph` as DOT text with an HTML legend vertex."""
    G = dependency_graph(levels, dump_level)
    vertices = [f'  {n} [label="{label}"];' for n, label in G.nodes(data="label")]
    edges = [f'  {u} -> {v} [label="{d["label"]}", color="{d["color"]}"];'
             for u, v, d in G.edges(data=True)]

    legend = (
        '< <TABLE BORDER="0" CELLBORDER="1" CELLSPACING="0" CELLPADDING="4">'
        '<TR><TD COLSPAN="2">Legend</TD></TR>'
        f'<TR><TD><FONT color="red">Level {dump_level}</FONT></TD>'
        f'<TD><FONT color="blue">Level {dump_level + 1}</FONT></TD></TR>'
        '</TABLE> >'
    )
    vertices.append(f"  {len(vertices)} [label={legend}];")
    return "digraph G {\n" + "\n".join(vertices + edges) + "\n}\n"


def write_dependency_graph(levels: Sequence[Any], dump_level: int, path: str) -> str:
    """Write `format_dependency_graph` output to `path` and return the path."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(format_dependency_graph(levels, dump_level))
    return path
