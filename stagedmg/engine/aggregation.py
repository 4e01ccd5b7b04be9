"""Strength-of-connection, aggregation and prolongation for one coarse level.

This module provides `TransferProducer`, which builds on a coarse level
    P         : R^{n_fine x n_coarse}  (aggregation-based prolongator)
    Nullspace : R^{n_coarse x K}       (coarse near-nullspace candidates)
from the fine operator and the fine near-nullspace.

Main responsibilities
---------------------
1) Strength-of-connection:
   Constructs a sparse adjacency/strength matrix C from a method spec, using
   standard PyAMG strength operators or a predefined C.

2) Aggregation:
   Builds AggOp from the requested aggregation strategy (standard, naive,
   lloyd, predefined).

3) Cleanup of unaggregated nodes:
   Rows of AggOp without a nonzero (isolated nodes) are assigned to
   neighboring aggregates by a voting step on the operator graph; any rows
   still unassigned become singleton aggregates.

4) Prolongation:
   Fits the near-nullspace on each aggregate (tentative prolongator T) and
   optionally smooths T with a Jacobi or Richardson step.
"""

from __future__ import annotations

from typing import Any

import numpy as np

try:
    # SciPy sparse arrays (preferred)
    from scipy.sparse import csr_array, coo_array, hstack, issparse  # type: ignore
except Exception:  # pragma: no cover
    # Fallback for older SciPy that only has sparse matrices
    from scipy.sparse import csr_matrix as csr_array  # type: ignore
    from scipy.sparse import coo_matrix as coo_array  # type: ignore
    from scipy.sparse import hstack, issparse  # type: ignore

from pyamg.aggregation.aggregate import (
    lloyd_aggregation,
    naive_aggregation,
    standard_aggregation,
)
from pyamg.aggregation.smooth import (
    jacobi_prolongation_smoother,
    richardson_prolongation_smoother,
)
from pyamg.aggregation.tentative import fit_candidates
from pyamg.strength import (
    classical_strength_of_connection,
    evolution_strength_of_connection,
    symmetric_strength_of_connection,
)

from .producers import Producer, fine_level_of
from .types import MethodSpec, unpack_arg


def fill_unaggregated_by_neighbors(Adj, AggOp, *, make_singletons: bool = True):
    """Assign unaggregated fine nodes to neighbor aggregates.

    A "fine node" is unaggregated if its row in AggOp has no nonzeros.

    The procedure is:
      1) Form a nonnegative weight matrix W from the off-diagonal of Adj.
      2) Compute V = W @ AggOp, which gives, for each fine node, a weighted vote
         for each aggregate based on its neighbors' aggregate assignments.
      3) For each unassigned row i, assign it to the aggregate with the largest vote.
      4) If requested, create singleton aggregates for any remaining unassigned nodes.

    Parameters
    ----------
    Adj
        CSR sparse matrix/array of shape (n_fine, n_fine) used as a neighbor graph.
    AggOp
        CSR sparse matrix/array of shape (n_fine, n_aggs) with one nonzero per
        assigned row.
    make_singletons
        If True, create a new singleton aggregate for any still-unassigned row.

    Returns
    -------
    AggOp_filled
        CSR aggregation operator. The number of columns may increase if
        singleton aggregates are created.
    """
    if (not issparse(Adj)) or getattr(Adj, "format", None) != "csr":
        raise TypeError("Adj must be CSR sparse")

    if (not issparse(AggOp)) or getattr(AggOp, "format", None) != "csr":
        raise TypeError("AggOp must be CSR sparse")

    n_fine, n_aggs = AggOp.shape
    AggOp = csr_array(AggOp, dtype=float)

    nnz_row = np.diff(AggOp.indptr)
    unassigned = np.flatnonzero(nnz_row == 0)
    if unassigned.size == 0:
        return AggOp

    # Nonnegative off-diagonal weights
    G = Adj.tocoo()
    off = G.row != G.col
    W = csr_array((np.abs(G.data[off]), (G.row[off], G.col[off])), shape=Adj.shape)
    W.eliminate_zeros()

    V = (W @ AggOp).tocsr()

    new_rows: list[int] = []
    new_cols: list[int] = []
    for i in unassigned:
        s, e = V.indptr[i], V.indptr[i + 1]
        if e <= s:
            continue
        cols_i = V.indices[s:e]
        vals_i = V.data[s:e]
        new_rows.append(int(i))
        new_cols.append(int(cols_i[int(np.argmax(vals_i))]))

    if new_rows:
        add = coo_array(
            (np.ones(len(new_rows)), (np.asarray(new_rows), np.asarray(new_cols))),
            shape=AggOp.shape,
        )
        AggOp = (AggOp + add).tocsr()

    nnz_row = np.diff(AggOp.indptr)
    still_unassigned = np.flatnonzero(nnz_row == 0)

    if make_singletons and still_unassigned.size > 0:
        k = int(still_unassigned.size)

        # Pad AggOp with k empty columns and then add one 1 per remaining row.
        AggOp = hstack([AggOp, csr_array((n_fine, k), dtype=float)], format="csr")
        new_cols_arr = np.arange(n_aggs, n_aggs + k, dtype=np.int32)
        add = coo_array(
            (np.ones(k), (still_unassigned.astype(np.int32), new_cols_arr)),
            shape=AggOp.shape,
        )
        AggOp = (AggOp + add).tocsr()

    AggOp.eliminate_zeros()
    AggOp.sort_indices()
    return AggOp


def build_strength(A, B, strength_spec: MethodSpec):
    """Compute the strength-of-connection matrix C from a strength spec.

    Parameters
    ----------
    A
        Operator on this level (CSR).
    B
        Near-nullspace candidates on this level; used by "evolution".
    strength_spec
        A method name, a (name, kwargs) pair such as ("predefined", {"C": C}),
        or None for |A|.

    Returns
    -------
    C
        CSR strength-of-connection matrix without explicit zeros.
    """
    name, kwargs = unpack_arg(strength_spec)

    if name == "symmetric":
        C = symmetric_strength_of_connection(A, **kwargs)
    elif name == "classical":
        C = classical_strength_of_connection(A, **kwargs)
    elif name == "evolution":
        C = evolution_strength_of_connection(A, B, **kwargs)
    elif name == "predefined":
        C = kwargs["C"].tocsr(copy=True)
        if C.shape != A.shape:
            raise ValueError(f"Predefined strength matrix has shape {C.shape}, the operator "
                             f"{A.shape}; it only fits the finest level")
    elif name is None:
        C = abs(A.copy()).tocsr()
    else:
        raise ValueError(f"Unrecognized strength-of-connection method: {name!r}")

    C = C.tocsr()
    C.eliminate_zeros()
    return C


def build_aggop(A, C, aggregate_spec: MethodSpec):
    """Build a CSR aggregation operator of shape (n_fine, n_aggs) with every row assigned.

    Supported names: "standard", "naive", "lloyd", "predefined" (kwargs: AggOp).
    """
    name, kwargs = unpack_arg(aggregate_spec)

    if name == "standard":
        AggOp = standard_aggregation(C, **kwargs)[0]
    elif name == "naive":
        AggOp = naive_aggregation(C, **kwargs)[0]
    elif name == "lloyd":
        AggOp = lloyd_aggregation(C, **kwargs)[0]
    elif name == "predefined":
        AggOp = kwargs["AggOp"]
        if AggOp.shape[0] != A.shape[0]:
            raise ValueError(f"Predefined AggOp has {AggOp.shape[0]} rows, the operator "
                             f"{A.shape[0]}; it only fits the finest level")
    else:
        raise ValueError(f"Unrecognized aggregation method: {name!r}")

    # The operator graph, not C, decides where isolated nodes go.
    return fill_unaggregated_by_neighbors(A.tocsr(), AggOp.tocsr(), make_singletons=True)


def smooth_prolongator(A, T, C, B_coarse, smooth_spec: MethodSpec):
    """Smooth the tentative prolongator T according to `smooth_spec`.

    Supported names: "jacobi", "richardson", None (return T unchanged).
    """
    name, kwargs = unpack_arg(smooth_spec)

    if name == "jacobi":
        P = jacobi_prolongation_smoother(A, T, C, B_coarse, **kwargs)
    elif name == "richardson":
        P = richardson_prolongation_smoother(A, T, **kwargs)
    elif name is None:
        P = T
    else:
        raise ValueError(f"Unrecognized prolongation smoother: {name!r}")

    P = P.tocsr()
    P.sort_indices()
    return P


class TransferProducer(Producer):
    """Aggregation-based prolongator "P" and coarse near-nullspace "Nullspace".

    Inputs (on the next-finer level)
    --------------------------------
    A
        Published fine operator.
    Nullspace
        On level 0, the user-provided candidates (constant vector if absent);
        on coarser levels, the candidates this producer built there.

    Parameters
    ----------
    strength, aggregate, smooth
        Method specs, see `build_strength`, `build_aggop` and `smooth_prolongator`.
    """

    provides = ("P", "Nullspace")

    def __init__(self, strength: MethodSpec = "symmetric", aggregate: MethodSpec = "standard",
                 smooth: MethodSpec = ("jacobi", {"omega": 4.0 / 3.0})) -> None:
        self.strength = strength
        self.aggregate = aggregate
        self.smooth = smooth

    def _nullspace_key(self, fine: Any) -> Any:
        return None if fine.level_id == 0 else self

    def declare_input(self, level: Any) -> None:
        fine = fine_level_of(level)
        fine.request("A")
        fine.request("Nullspace", self._nullspace_key(fine))

    def release_input(self, level: Any) -> None:
        fine = fine_level_of(level)
        fine.release("A")
        fine.release("Nullspace", self._nullspace_key(fine))

    def build(self, level: Any) -> None:
        fine = fine_level_of(level)
        A = fine.get("A")
        key = self._nullspace_key(fine)
        if fine.is_available("Nullspace", key):
            B = np.asarray(fine.get("Nullspace", key), dtype=A.dtype)
            B = B.reshape(A.shape[0], -1)
        else:
            B = np.ones((A.shape[0], 1), dtype=A.dtype)

        C = build_strength(A, B, self.strength)
        AggOp = build_aggop(A, C, self.aggregate)
        T, B_coarse = fit_candidates(AggOp, B)
        P = smooth_prolongator(A, T, C, B_coarse, self.smooth)

        level.set("P", P, self)
        level.set("Nullspace", B_coarse, self)
