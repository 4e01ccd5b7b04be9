"""Exception kinds raised by the hierarchy engine.

All failures are fatal for the call that raised them and are never retried
internally. Soft anomalies (a missing smoother, no coarse solver) are not
exceptions; they are reported with `warnings.warn`.
"""

from __future__ import annotations


class StagedMGError(Exception):
    """Base class of every error raised by the hierarchy engine."""


class PreconditionViolation(StagedMGError, ValueError):
    """Bad argument: invalid level ID, missing fine operator, too few levels, no manager."""


class StructuralInconsistency(StagedMGError, RuntimeError):
    """Level ID/parent mismatch, chain-length mismatch or request/release imbalance."""


class IncompatibleOperands(StagedMGError, ValueError):
    """Operator and vector do not fit together during a cycle."""


class NotAvailable(StagedMGError, KeyError):
    """An artifact was queried with `Level.get` but was never produced."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""
