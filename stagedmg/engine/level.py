"""Per-level artifact store and the owning chain of levels.

A `Level` is a keyed bag of artifacts (operators, smoothers, transfer
operators) for one grid resolution. Artifacts are keyed by
``(name, producer)``; ``producer=None`` denotes data set directly by the user
or published by the hierarchy once construction of that artifact is final.

Request/release protocol
------------------------
Lifetimes are governed by explicit reference counts rather than by garbage
collection, so eviction happens at a deterministic point:

  - `request(name, producer)` increments the outstanding-need counter of a slot.
    The first request of a not-yet-available output of `producer` calls
    `producer.declare_input(level)`, which requests the producer's own inputs.
  - `release(name, producer)` decrements it. At zero, the value is dropped
    unless the slot carries a keep flag. If no output of `producer` on this
    level is still requested, the producer's inputs are released as well.
  - `consumed(producer)` is called once a producer has built its outputs; it
    releases the producer's inputs exactly once.

`LevelChain` is the arena that owns the levels. A level refers to its
next-finer neighbour by index into the chain, never by holding it.
"""

from __future__ import annotations

from typing import Any, Iterator
from warnings import warn

from .errors import NotAvailable, StructuralInconsistency
from .types import ArtifactSlot, KeepFlag


def _label(name: str, producer: Any) -> str:
    """Human readable key used in error messages."""
    if producer is None:
        return repr(name)
    return f"{name!r} (producer {type(producer).__name__})"


class Level:
    """One resolution of the multigrid hierarchy.

    Parameters
    ----------
    level_id
        Optional pre-assigned ID. The ID is (re)assigned when the level is
        appended to a `LevelChain`; a mismatching pre-assigned ID triggers a
        warning from `Hierarchy.add_level`.
    """

    def __init__(self, level_id: int = -1) -> None:
        self._level_id = level_id
        self._chain: LevelChain | None = None
        self._previous_id: int | None = None
        self._slots: dict[tuple[str, Any], ArtifactSlot] = {}
        # producers whose inputs are currently requested for outputs on this level
        self._declared: list[Any] = []

    # ---- structure ----

    @property
    def level_id(self) -> int:
        """Position of this level in its chain (-1 while detached)."""
        return self._level_id

    @property
    def previous_level(self) -> "Level | None":
        """Next-finer level, resolved through the owning chain."""
        if self._chain is None or self._previous_id is None:
            return None
        return self._chain[self._previous_id]

    def _attach(self, chain: "LevelChain", level_id: int) -> None:
        """Bind this level to position `level_id` of `chain`."""
        if self._chain is not None:
            raise StructuralInconsistency(
                f"Level {self._level_id} is already part of a hierarchy")
        self._chain = chain
        self._level_id = level_id
        self._previous_id = None if level_id == 0 else level_id - 1

    def _detach(self) -> None:
        """Forget the owning chain after truncation."""
        self._chain = None
        self._previous_id = None

    def build(self) -> "Level":
        """Derive a new, empty level. Only keep flags are carried forward."""
        new = type(self)()
        for key, slot in self._slots.items():
            flags = slot.keep & ~KeepFlag.USER
            if flags:
                new._slots[key] = ArtifactSlot(keep=flags)
        return new

    # ---- artifact store ----

    def request(self, name: str, producer: Any = None) -> None:
        """Declare one more outstanding need for an artifact. Nothing is computed."""
        key = (name, producer)
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = ArtifactSlot()
        slot.requests += 1

        if producer is not None and not slot.available and not self._is_declared(producer):
            self._declared.append(producer)
            producer.declare_input(self)

    def release(self, name: str, producer: Any = None) -> None:
        """Drop one outstanding need; evict the value when none remain and it is not kept."""
        key = (name, producer)
        slot = self._slots.get(key)
        if slot is None or slot.requests == 0:
            raise StructuralInconsistency(
                f"Level {self._level_id}: release of {_label(name, producer)} "
                "without a matching request")
        slot.requests -= 1
        if slot.requests > 0:
            return

        if not slot.keep:
            del self._slots[key]

        if producer is not None and self._is_declared(producer) \
                and not self._has_requests_for(producer):
            self._undeclare(producer)

    def consumed(self, producer: Any) -> None:
        """Release the inputs of `producer` after it has built its outputs here."""
        if self._is_declared(producer):
            self._undeclare(producer)

    def get(self, name: str, producer: Any = None) -> Any:
        """Return a stored artifact.

        Raises
        ------
        NotAvailable
            If the artifact was never produced (or has been evicted). Use
            `is_available` first wherever absence is a legitimate branch.
        """
        slot = self._slots.get((name, producer))
        if slot is None or not slot.available:
            raise NotAvailable(
                f"Level {self._level_id}: {_label(name, producer)} is not available")
        return slot.value

    def is_available(self, name: str, producer: Any = None) -> bool:
        """Return True if the artifact has a stored value. Never computes anything."""
        slot = self._slots.get((name, producer))
        return slot is not None and slot.available

    def is_requested(self, name: str, producer: Any = None) -> bool:
        """Return True if the artifact has outstanding requests."""
        return self.num_requests(name, producer) > 0

    def num_requests(self, name: str, producer: Any = None) -> int:
        """Number of outstanding requests for the artifact."""
        slot = self._slots.get((name, producer))
        return 0 if slot is None else slot.requests

    def set(self, name: str, value: Any, producer: Any = None) -> None:
        """Store an artifact.

        Without a producer the value is user data and is kept regardless of
        requests (this is how the finest operator is seeded). With a producer
        the value is stored only if it is requested or kept; otherwise nobody
        needs it and it is dropped immediately.
        """
        key = (name, producer)
        slot = self._slots.get(key)
        if producer is None:
            if slot is None:
                slot = self._slots[key] = ArtifactSlot()
            slot.keep |= KeepFlag.USER
        elif slot is None or (slot.requests == 0 and not slot.keep):
            return

        slot.value = value
        slot.available = True

    def keep(self, name: str, producer: Any = None) -> None:
        """Mark an artifact so it survives its last release."""
        self.add_keep_flag(name, producer, KeepFlag.KEEP)

    def add_keep_flag(self, name: str, producer: Any = None,
                      flag: KeepFlag = KeepFlag.KEEP) -> None:
        """Add `flag` to the keep flags of an artifact, creating its slot if needed."""
        key = (name, producer)
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = ArtifactSlot()
        slot.keep |= flag

    def remove_keep_flag(self, name: str, producer: Any = None,
                         flag: KeepFlag = KeepFlag.KEEP) -> None:
        """Remove `flag`; the artifact is evicted if nothing else holds it."""
        key = (name, producer)
        slot = self._slots.get(key)
        if slot is None:
            return
        slot.keep &= ~flag
        if slot.requests == 0 and not slot.keep:
            del self._slots[key]

    def delete(self, name: str, producer: Any = None) -> None:
        """Forcefully drop an artifact that is no longer requested."""
        key = (name, producer)
        slot = self._slots.get(key)
        if slot is None:
            return
        if slot.requests > 0:
            raise StructuralInconsistency(
                f"Level {self._level_id}: cannot delete {_label(name, producer)}, "
                f"{slot.requests} request(s) outstanding")
        del self._slots[key]

    def keys(self) -> list[tuple[str, Any]]:
        """All (name, producer) keys currently held by this level."""
        return list(self._slots)

    def slots(self) -> Iterator[tuple[tuple[str, Any], ArtifactSlot]]:
        """Iterate over (key, slot) pairs. Slots must not be mutated."""
        return iter(list(self._slots.items()))

    def outstanding_requests(self) -> dict[tuple[str, Any], int]:
        """Map of keys with a nonzero request count."""
        return {k: s.requests for k, s in self._slots.items() if s.requests > 0}

    # ---- producer bookkeeping ----

    def _is_declared(self, producer: Any) -> bool:
        return any(p is producer for p in self._declared)

    def _has_requests_for(self, producer: Any) -> bool:
        return any(p is producer and s.requests > 0 for (_, p), s in self._slots.items())

    def _undeclare(self, producer: Any) -> None:
        self._declared = [p for p in self._declared if p is not producer]
        producer.release_input(self)

    def __repr__(self) -> str:
        names = sorted({name for name, _ in self._slots if self.is_available(name)})
        return f"Level(level_id={self._level_id}, artifacts={names})"


class LevelChain:
    """Owning, ordered sequence of levels with contiguous IDs starting at 0."""

    def __init__(self) -> None:
        self._levels: list[Level] = []

    def append(self, level: Level) -> int:
        """Append `level`, assigning it the next ID. Returns that ID."""
        level_id = len(self._levels)
        if level._level_id != -1 and level._level_id != level_id:
            warn(f"Level with ID={level._level_id} has been added at the end of the "
                 f"hierarchy but its ID has been redefined to {level_id}")
        level._attach(self, level_id)
        self._levels.append(level)
        return level_id

    def pop(self) -> Level:
        """Remove and return the last level."""
        if len(self._levels) <= 1:
            raise StructuralInconsistency("cannot remove the finest level")
        level = self._levels.pop()
        level._detach()
        return level

    @property
    def last_level_id(self) -> int:
        """ID of the coarsest level currently in the chain."""
        return len(self._levels) - 1

    def __getitem__(self, i: int) -> Level:
        return self._levels[i]

    def __len__(self) -> int:
        return len(self._levels)

    def __iter__(self) -> Iterator[Level]:
        return iter(self._levels)
