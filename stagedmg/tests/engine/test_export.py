"""Matrix Market export, dependency-graph dump and summaries."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.io import mmread

from pyamg.gallery import poisson

from stagedmg.engine import FactoryManager, Hierarchy, ManagerConfig, PreconditionViolation
from stagedmg.engine.export import dependency_graph, format_dependency_graph, level_range
from stagedmg.engine.level import Level
from stagedmg.engine.producers import TransposeRestrictor
from stagedmg.staged import staged_solver


def _hierarchy(**kwargs):
    A = poisson((200,), format="csr")
    return staged_solver(A, max_coarse=10, **kwargs), A


def test_write_all_levels(tmp_path):
    H, A = _hierarchy()
    paths = H.write(directory=str(tmp_path))

    n = H.num_levels
    expected = {f"A_{i}.mtx" for i in range(n)}
    expected |= {f"{name}_{i}.mtx" for i in range(1, n) for name in ("P", "R")}
    assert {p.split("/")[-1] for p in paths} == expected
    assert {p.name for p in tmp_path.iterdir()} == expected

    A0 = mmread(str(tmp_path / "A_0.mtx"))
    np.testing.assert_allclose(A0.toarray(), A.toarray())
    P1 = mmread(str(tmp_path / "P_1.mtx"))
    assert P1.shape == H.get_level(1).get("P").shape


def test_write_range_and_implicit_transpose(tmp_path):
    H, _ = _hierarchy(implicit_transpose=True)
    H.write(start=1, end=2, directory=str(tmp_path))
    assert {p.name for p in tmp_path.iterdir()} == {"A_1.mtx", "A_2.mtx", "P_2.mtx"}


def test_write_rejects_bad_ranges(tmp_path):
    H, _ = _hierarchy()
    with pytest.raises(PreconditionViolation):
        H.write(start=2, end=1, directory=str(tmp_path))
    with pytest.raises(PreconditionViolation):
        H.write(end=H.num_levels, directory=str(tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_level_range_defaults():
    assert list(level_range(4)) == [0, 1, 2, 3]
    assert list(level_range(4, 2)) == [2, 3]
    assert list(level_range(4, -1, 0)) == [0]


def test_dependency_graph_dump_during_setup(tmp_path):
    path = tmp_path / "graph.dot"
    A = poisson((200,), format="csr")
    H = staged_solver(A, max_coarse=10, dump_level=1, dump_file=str(path))

    text = path.read_text(encoding="utf-8")
    assert text.startswith("digraph G {")
    assert 'color="red"' in text
    assert 'color="blue"' in text
    assert "Legend" in text
    assert "TransferProducer" in text
    assert H.num_levels > 2


def test_dependency_graph_at_finest_level(tmp_path):
    path = tmp_path / "graph0.dot"
    A = poisson((200,), format="csr")
    staged_solver(A, max_coarse=10, dump_level=0, dump_file=str(path))
    text = path.read_text(encoding="utf-8")
    assert "Level 0" in text
    assert "Level 1" in text
    # requests of the next level are pending when the graph is dumped
    assert "(1)" in text


def test_format_dependency_graph_labels_requests():
    level = Level()
    producer = TransposeRestrictor(None)
    level.set("A", 1)
    level.add_keep_flag("R", producer)
    level.request("A")

    text = format_dependency_graph([level], 0)
    assert '[label="user"]' in text
    assert '[label="TransposeRestrictor"]' in text
    assert 'label="A (1)", color="red"' in text
    assert 'label="R", color="red"' in text
    level.release("A")


def test_dependency_graph_structure():
    A = poisson((200,), format="csr")
    H = staged_solver(A, max_coarse=10)
    G = dependency_graph(H.levels, 0)

    labels = dict(G.nodes(data="label"))
    assert "Level 0" in labels.values()
    assert "Level 1" in labels.values()
    assert "user" in labels.values()
    # one edge per stored artifact, colored by level
    n_slots = sum(1 for level in H.levels[:2] for _ in level.slots())
    assert G.number_of_edges() == n_slots
    assert {c for _, _, c in G.edges(data="color")} == {"red", "blue"}
    level_nodes = {n for n, label in labels.items() if label.startswith("Level")}
    assert all(v in level_nodes for _, v in G.edges())

    last = dependency_graph(H.levels, H.last_level_id)
    assert {c for _, _, c in last.edges(data="color")} == {"red"}


def test_dump_without_level_is_rejected():
    with pytest.raises(PreconditionViolation):
        Hierarchy().dump_current_graph()


def test_summary_and_complexity():
    H, A = _hierarchy()
    rows = [level.get("A").shape[0] for level in H.levels]
    nnz = [level.get("A").nnz for level in H.levels]

    assert H.operator_complexity() == pytest.approx(sum(nnz) / nnz[0])
    assert H.grid_complexity() == pytest.approx(sum(rows) / rows[0])
    assert 1.0 < H.operator_complexity() < 2.0

    text = H.summary()
    assert text.startswith("Multigrid Summary")
    assert f"Number of Levels:     {H.num_levels}" in text
    assert "Implicit Transpose:   false" in text
    assert repr(H) == text

    verbose = H.summary(verbose=True)
    assert "nnz/row" in verbose
    assert "Smoother (level 0) pre" in verbose
    assert "direct solve (splu)" in verbose


def test_repr_before_setup_is_short():
    H = Hierarchy()
    assert repr(H) == "Hierarchy{numLevels = 1}"


def test_describe_counts_levels():
    A = poisson((200,), format="csr")
    H = Hierarchy(A, max_coarse=10)
    H.setup(FactoryManager.from_config(ManagerConfig()), 0, 3)
    assert H.describe() == "Hierarchy{numLevels = 3}"
