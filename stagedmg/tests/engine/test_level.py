"""Request/release bookkeeping of the per-level artifact store."""

from __future__ import annotations

import pytest

from stagedmg.engine.errors import NotAvailable, StructuralInconsistency
from stagedmg.engine.level import Level, LevelChain
from stagedmg.engine.producers import Producer
from stagedmg.engine.types import KeepFlag


class CountingProducer(Producer):
    """Produces "X" on a level from "Y" on the same level and counts its calls."""

    provides = ("X",)

    def __init__(self):
        self.declared = 0
        self.released = 0
        self.built = 0

    def declare_input(self, level):
        self.declared += 1
        level.request("Y")

    def release_input(self, level):
        self.released += 1
        level.release("Y")

    def build(self, level):
        self.built += 1
        level.set("X", 2 * level.get("Y"), self)


def test_request_twice_release_once_keeps_value():
    level = Level()
    producer = CountingProducer()
    level.set("Y", 21)

    level.request("X", producer)
    level.request("X", producer)
    producer.call_build(level)
    level.release("X", producer)

    assert level.is_available("X", producer)
    assert level.get("X", producer) == 42
    assert level.num_requests("X", producer) == 1


def test_value_evicted_when_requests_reach_zero():
    level = Level()
    producer = CountingProducer()
    level.set("Y", 1)

    level.request("X", producer)
    producer.call_build(level)
    level.release("X", producer)

    assert not level.is_available("X", producer)
    assert ("X", producer) not in level.keys()
    with pytest.raises(NotAvailable):
        level.get("X", producer)


def test_kept_value_survives_release():
    level = Level()
    producer = CountingProducer()
    level.set("Y", 1)

    level.keep("X", producer)
    level.request("X", producer)
    producer.call_build(level)
    level.release("X", producer)

    assert level.get("X", producer) == 2

    level.remove_keep_flag("X", producer)
    assert not level.is_available("X", producer)


def test_inputs_declared_once_and_released_after_build():
    level = Level()
    producer = CountingProducer()
    level.set("Y", 3)

    level.request("X", producer)
    level.request("X", producer)
    assert producer.declared == 1
    assert level.num_requests("Y") == 1

    producer.call_build(level)
    assert producer.built == 1
    assert producer.released == 1
    assert level.num_requests("Y") == 0

    # already built: no second build, no second release
    producer.call_build(level)
    assert producer.built == 1
    assert producer.released == 1

    level.release("X", producer)
    level.release("X", producer)
    assert level.outstanding_requests() == {}


def test_inputs_released_when_output_never_built():
    level = Level()
    producer = CountingProducer()

    level.request("X", producer)
    assert level.is_requested("Y")
    level.release("X", producer)

    assert producer.built == 0
    assert producer.released == 1
    assert level.outstanding_requests() == {}


def test_get_of_unbuilt_artifact_fails_and_is_available_has_no_side_effects():
    level = Level()
    producer = CountingProducer()
    level.set("Y", 1)
    level.request("X", producer)
    before = (producer.declared, producer.built, dict(level.outstanding_requests()))

    assert not level.is_available("X", producer)
    assert not level.is_available("Z")
    with pytest.raises(NotAvailable):
        level.get("X", producer)

    assert (producer.declared, producer.built, dict(level.outstanding_requests())) == before
    assert ("Z", None) not in level.keys()


def test_release_without_request_is_structural_error():
    level = Level()
    with pytest.raises(StructuralInconsistency):
        level.release("A")

    level.request("A")
    level.release("A")
    with pytest.raises(StructuralInconsistency):
        level.release("A")


def test_set_with_producer_drops_unrequested_value():
    level = Level()
    producer = CountingProducer()

    level.set("X", 5, producer)
    assert not level.is_available("X", producer)

    level.set("A", 5)
    assert level.get("A") == 5


def test_user_data_survives_request_cycle():
    level = Level()
    level.set("A", "matrix")
    level.request("A")
    level.release("A")
    assert level.get("A") == "matrix"


def test_delete_requires_no_outstanding_requests():
    level = Level()
    level.set("A", 1)
    level.request("A")
    with pytest.raises(StructuralInconsistency):
        level.delete("A")
    level.release("A")
    level.delete("A")
    assert not level.is_available("A")


def test_build_carries_keep_flags_only():
    level = Level()
    producer = CountingProducer()
    level.set("A", 1)
    level.keep("X", producer)
    level.add_keep_flag("Z", None, KeepFlag.KEEP | KeepFlag.USER)

    new = level.build()

    assert new.level_id == -1
    assert not new.is_available("A")
    assert ("A", None) not in new.keys()
    assert set(new.keys()) == {("X", producer), ("Z", None)}
    assert new.outstanding_requests() == {}


def test_chain_links_levels_by_index():
    chain = LevelChain()
    levels = [Level(), Level(), Level()]
    for i, level in enumerate(levels):
        assert chain.append(level) == i

    assert chain.last_level_id == 2
    assert levels[0].previous_level is None
    assert levels[1].previous_level is levels[0]
    assert levels[2].previous_level is levels[1]

    popped = chain.pop()
    assert popped is levels[2]
    assert popped.previous_level is None
    assert len(chain) == 2


def test_chain_refuses_to_drop_finest_level_or_reattach():
    chain = LevelChain()
    level = Level()
    chain.append(level)
    with pytest.raises(StructuralInconsistency):
        chain.pop()
    with pytest.raises(StructuralInconsistency):
        LevelChain().append(level)
