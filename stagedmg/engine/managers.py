"""Factory managers: which producer builds which artifact on a level.

A `FactoryManager` maps artifact names to producer instances. The hierarchy
asks the manager attached to a level for the producer of "A", "P", "R",
"Smoother" or "CoarseSolver" and drives it through the request/release
protocol. The set of roles is closed; the variants behind each role are chosen
by a `ManagerConfig`.

Roles
-----
"A"            : RAPProducer
"P"            : TransferProducer (also produces the coarse "Nullspace")
"Nullspace"    : same producer as "P"
"R"            : TransposeRestrictor (absent with implicit transpose)
"Smoother"     : SmootherProducer
"CoarseSolver" : CoarseSolverProducer
"""

from __future__ import annotations

from typing import Any

from .aggregation import TransferProducer
from .errors import PreconditionViolation
from .producers import (
    CoarseSolverProducer,
    Producer,
    RAPProducer,
    SmootherProducer,
    TransposeRestrictor,
)
from .types import ManagerConfig

ROLES = ("A", "P", "R", "Nullspace", "Smoother", "CoarseSolver")


class FactoryManager:
    """Name -> producer table shared by one or more levels.

    Parameters
    ----------
    producers
        Mapping from role name to producer. Unknown role names are rejected.
    """

    def __init__(self, producers: dict[str, Producer]) -> None:
        unknown = set(producers) - set(ROLES)
        if unknown:
            raise ValueError(f"Unrecognized producer roles: {sorted(unknown)}")
        self._producers = dict(producers)

    @classmethod
    def from_config(cls, config: ManagerConfig | None = None) -> "FactoryManager":
        """Wire the default producers from a `ManagerConfig`."""
        if config is None:
            config = ManagerConfig()

        transfer = TransferProducer(
            strength=config.strength,
            aggregate=config.aggregate,
            smooth=config.smooth,
        )
        restrictor = None if config.implicit_transpose else TransposeRestrictor(transfer)
        producers: dict[str, Producer] = {
            "A": RAPProducer(transfer, restrictor, implicit_transpose=config.implicit_transpose),
            "P": transfer,
            "Nullspace": transfer,
            "Smoother": SmootherProducer(config.presmoother, config.postsmoother),
            "CoarseSolver": CoarseSolverProducer(config.coarse_solver),
        }
        if restrictor is not None:
            producers["R"] = restrictor
        return cls(producers)

    def get_producer(self, name: str) -> Producer:
        """Return the producer registered for `name`."""
        try:
            return self._producers[name]
        except KeyError as e:
            raise PreconditionViolation(f"No producer registered for {name!r}") from e

    def has_producer(self, name: str) -> bool:
        """Return True if a producer is registered for `name`."""
        return name in self._producers

    @property
    def implicit_transpose(self) -> bool:
        """Whether the coarse operator is formed without an explicit "R"."""
        rap: Any = self._producers.get("A")
        return bool(getattr(rap, "implicit_transpose", not self.has_producer("R")))

    def __repr__(self) -> str:
        roles = ", ".join(f"{k}={v!r}" for k, v in self._producers.items())
        return f"FactoryManager({roles})"
