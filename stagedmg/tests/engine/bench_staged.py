"""Benchmark staged multigrid setup/solve on gallery Poisson problems.

Run from the repository root:
  python stagedmg/tests/engine/bench_staged.py --sizes 64 128 256 --cycle V W

Options:
  --cycle {V,W} ...        cycle type(s) used by the preconditioner
  --per-level              print per-level setup timing summaries
  --csv out.csv            write a CSV summary
"""

from __future__ import annotations

import argparse
import csv
import time

import numpy as np

from pyamg.gallery import poisson
from pyamg.krylov import fgmres

from stagedmg import staged_solver
from stagedmg.engine.stats import print_level_summary


def _conv_factor(res: list[float]) -> tuple[int, float, float]:
    """Return (iters, conv_factor, final_res)."""
    if len(res) < 2:
        return 0, float("nan"), float("nan")
    iters = len(res) - 1
    r0 = res[0]
    r1 = res[-1]
    if r0 <= 0:
        return iters, float("nan"), float(r1)
    cf = float(np.exp(np.log(r1 / r0) / max(iters, 1)))
    return iters, cf, float(r1)


def _run_one(
    *,
    A,
    b,
    cycle: str,
    aggregate: str,
    max_levels: int,
    max_coarse: int,
    implicit_transpose: bool,
    tol: float,
    maxiter: int,
    restart: int,
):
    t0 = time.perf_counter()
    H = staged_solver(
        A,
        aggregate=aggregate,
        max_levels=max_levels,
        max_coarse=max_coarse,
        implicit_transpose=implicit_transpose,
        print_info=False,  # keep bench output clean; use --per-level if desired
    )
    setup_time = time.perf_counter() - t0

    res: list[float] = []
    M = H.aspreconditioner(cycle=cycle)

    t1 = time.perf_counter()
    x, info = fgmres(A, b, tol=tol, restart=restart, maxiter=maxiter, M=M, residuals=res)
    solve_time = time.perf_counter() - t1

    iters, cf, final_res = _conv_factor(res)

    return dict(
        cycle=cycle,
        levels=H.num_levels,
        setup_time=setup_time,
        solve_time=solve_time,
        iters=iters,
        conv_factor=cf,
        final_res=final_res,
        info=info,
        oc=float(H.operator_complexity()),
        hierarchy=H,
    )


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--sizes", type=int, nargs="+", default=[64, 128])
    p.add_argument("--cycle", choices=["V", "W"], nargs="+", default=["V", "W"])
    p.add_argument("--aggregate", type=str, default="standard")
    p.add_argument("--max-levels", type=int, default=10)
    p.add_argument("--max-coarse", type=int, default=50)
    p.add_argument("--implicit-transpose", action="store_true")
    p.add_argument("--tol", type=float, default=1e-8)
    p.add_argument("--maxiter", type=int, default=100)
    p.add_argument("--restart", type=int, default=100)
    p.add_argument("--per-level", action="store_true")
    p.add_argument("--csv", type=str, default="")
    args = p.parse_args()

    rows = []
    for m in args.sizes:
        A = poisson((m, m), format="csr")
        n = A.shape[0]

        rng = np.random.default_rng(n)
        b = rng.standard_normal(n)

        print(f"\n=== poisson {m}x{m} (n={n}) ===")
        for cycle in args.cycle:
            out = _run_one(
                A=A,
                b=b,
                cycle=cycle,
                aggregate=args.aggregate,
                max_levels=args.max_levels,
                max_coarse=args.max_coarse,
                implicit_transpose=args.implicit_transpose,
                tol=args.tol,
                maxiter=args.maxiter,
                restart=args.restart,
            )
            print(
                f"{cycle:>3} | levels={out['levels']} setup={out['setup_time']:.2f}s "
                f"solve={out['solve_time']:.2f}s iters={out['iters']:3d} "
                f"cf={out['conv_factor']:.3f} oc={out['oc']:.2f} final_res={out['final_res']:.2e}"
            )

            if args.per_level:
                for s in out["hierarchy"].setup_stats:
                    print("-" * 72)
                    print_level_summary(s, print_info=True)

            row = dict(case=f"poisson_{m}", n=n, **out)
            row.pop("hierarchy")
            rows.append(row)

    if args.csv:
        with open(args.csv, "w", newline="") as fp:
            w = csv.DictWriter(fp, fieldnames=rows[0].keys())
            w.writeheader()
            w.writerows(rows)
        print(f"\nWrote {args.csv}")


if __name__ == "__main__":
    main()
