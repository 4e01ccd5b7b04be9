"""Artifact producers: the "build this named artifact for this level" contract.

A producer writes one or more named artifacts onto a level. It is invoked by
the hierarchy through the request/release protocol of `Level`:

  1) the first request of one of its outputs on a level calls
     `declare_input(level)`, where the producer requests its own inputs
     (on the same level or on `level.previous_level`);
  2) `call_build(level)` computes the outputs (unless already available),
     stores them with `level.set(name, value, self)` and then lets the level
     release the inputs declared in step 1;
  3) outputs that are no longer requested are evicted by the level.

Producers in this module
------------------------
RAPProducer
    Coarse operator "A" = R A_fine P (or P^H A_fine P with implicit transpose).
TransposeRestrictor
    Restriction "R" = P^H.
SmootherProducer
    "PreSmoother"/"PostSmoother" from relaxation specs.
CoarseSolverProducer
    "PreSmoother" holding a direct solver for the coarsest level.

The aggregation-based prolongation producer lives in `aggregation.py`.
"""

from __future__ import annotations

from typing import Any

from .errors import StructuralInconsistency
from .smoothers import make_coarse_solver, make_smoother
from .types import MethodSpec, SparseLike


def fine_level_of(level: Any) -> Any:
    """Return the next-finer level of `level`, failing if it has none."""
    fine = level.previous_level
    if fine is None:
        raise StructuralInconsistency(
            f"Level {level.level_id} has no finer level to build from")
    return fine


class Producer:
    """Base class of artifact producers.

    Subclasses set `provides` (the first entry is the primary output used to
    decide whether a build is needed) and implement `build`.
    """

    provides: tuple[str, ...] = ()

    def declare_input(self, level: Any) -> None:
        """Request every input needed to build this producer's outputs on `level`."""

    def release_input(self, level: Any) -> None:
        """Release the requests made by `declare_input`."""

    def build(self, level: Any) -> None:
        """Compute the outputs and store them on `level`."""
        raise NotImplementedError

    def call_build(self, level: Any) -> None:
        """Build on `level` unless the primary output is already available."""
        if level.is_available(self.provides[0], self):
            return
        self.build(level)
        level.consumed(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def galerkin_product(A: SparseLike, P: SparseLike, R: SparseLike | None) -> SparseLike:
    """Form the coarse operator R A P, using R = P^H when `R` is None.

    Returns
    -------
    A_c
        CSR coarse operator with sorted indices.
    """
    if R is None:
        R = P.T.conjugate()
    A_c = (R @ (A @ P)).tocsr()
    A_c.sort_indices()
    return A_c


class RAPProducer(Producer):
    """Coarse operator from the fine operator and the level's transfer operators.

    Parameters
    ----------
    p_producer
        Producer of "P" on the coarse level.
    r_producer
        Producer of "R" on the coarse level. Unused with `implicit_transpose`.
    implicit_transpose
        If True, restriction is P^H and "R" is never requested.
    """

    provides = ("A",)

    def __init__(self, p_producer: Producer, r_producer: Producer | None = None,
                 implicit_transpose: bool = False) -> None:
        if r_producer is None and not implicit_transpose:
            raise ValueError("RAPProducer needs an R producer unless implicit_transpose is set")
        self.p_producer = p_producer
        self.r_producer = r_producer
        self.implicit_transpose = implicit_transpose

    def declare_input(self, level: Any) -> None:
        fine_level_of(level).request("A")
        level.request("P", self.p_producer)
        if not self.implicit_transpose:
            level.request("R", self.r_producer)

    def release_input(self, level: Any) -> None:
        fine_level_of(level).release("A")
        level.release("P", self.p_producer)
        if not self.implicit_transpose:
            level.release("R", self.r_producer)

    def build(self, level: Any) -> None:
        A = fine_level_of(level).get("A")
        if A is None:
            # no rows of the fine operator here, so no coarse rows either
            level.set("A", None, self)
            return

        self.p_producer.call_build(level)
        P = level.get("P", self.p_producer)
        R = None
        if not self.implicit_transpose:
            self.r_producer.call_build(level)
            R = level.get("R", self.r_producer)

        A_c = galerkin_product(A, P, R)
        symmetry = getattr(A, "symmetry", None)
        if symmetry is not None:
            A_c.symmetry = symmetry
        level.set("A", A_c, self)


class TransposeRestrictor(Producer):
    """Restriction as the conjugate transpose of the prolongator."""

    provides = ("R",)

    def __init__(self, p_producer: Producer) -> None:
        self.p_producer = p_producer

    def declare_input(self, level: Any) -> None:
        level.request("P", self.p_producer)

    def release_input(self, level: Any) -> None:
        level.release("P", self.p_producer)

    def build(self, level: Any) -> None:
        self.p_producer.call_build(level)
        P = level.get("P", self.p_producer)
        level.set("R", P.T.conjugate().tocsr(), self)


class SmootherProducer(Producer):
    """Pre- and post-smoothers for a level.

    Passing the same spec object for pre and post shares a single smoother.
    """

    provides = ("PreSmoother", "PostSmoother")

    def __init__(self, presmoother: MethodSpec = ("gauss_seidel", {"sweep": "symmetric"}),
                 postsmoother: MethodSpec = ("gauss_seidel", {"sweep": "symmetric"})) -> None:
        self.presmoother = presmoother
        self.postsmoother = postsmoother

    def declare_input(self, level: Any) -> None:
        level.request("A")

    def release_input(self, level: Any) -> None:
        level.release("A")

    def build(self, level: Any) -> None:
        A = level.get("A")
        if A is None:
            return
        pre = make_smoother(A, self.presmoother)
        if self.postsmoother is self.presmoother:
            post = pre
        else:
            post = make_smoother(A, self.postsmoother)
        if pre is not None:
            level.set("PreSmoother", pre, self)
        if post is not None:
            level.set("PostSmoother", post, self)


class CoarseSolverProducer(Producer):
    """Direct solver for the coarsest level, stored as its "PreSmoother"."""

    provides = ("PreSmoother", "PostSmoother")

    def __init__(self, solver: MethodSpec = "splu") -> None:
        self.solver = solver

    def declare_input(self, level: Any) -> None:
        level.request("A")

    def release_input(self, level: Any) -> None:
        level.release("A")

    def build(self, level: Any) -> None:
        A = level.get("A")
        if A is None:
            return
        level.set("PreSmoother", make_coarse_solver(A, self.solver), self)
