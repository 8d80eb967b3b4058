#!/usr/bin/env python
"""
Benchmark for the torch-dla RQ factorization and solve.

Times factorize + solve_after for a range of sizes, on a plain tensor and on
a single-process DistMatrix, and records the residual.

Usage:
    python benchmark_rq.py                    # default sizes
    python benchmark_rq.py --sizes 64 128     # custom sizes (m = n / 2)
    python benchmark_rq.py --dtype complex128
"""

import argparse
import json
import os
import sys
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List

import torch

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import torch_dla as dla
from torch_dla import rq

# Output directories
OUTPUT_DIR = Path(__file__).parent / "results" / "benchmark_rq"


@dataclass
class BenchmarkResult:
    """Result of a single benchmark run."""
    layout: str
    m: int
    n: int
    dtype: str
    factor_time: float
    solve_time: float
    residual: float


def run_one(layout: str, m: int, n: int, dtype) -> BenchmarkResult:
    gen = torch.Generator().manual_seed(m + n)
    A = dla.full_row_rank(m, n, cond=100.0, dtype=dtype, generator=gen)
    B = dla.gaussian((m, 1), dtype, generator=gen)
    if layout == 'dist':
        grid = dla.Grid()
        F, Bm = dla.DistMatrix.from_global(grid, A), dla.DistMatrix.from_global(grid, B)
    else:
        F, Bm = A.clone(), B

    t0 = time.perf_counter()
    t, d = rq.factorize(F)
    t1 = time.perf_counter()
    X = rq.solve_after('normal', F, t, d, Bm)
    t2 = time.perf_counter()

    X = X.to_global() if layout == 'dist' else X
    residual = (torch.linalg.norm(A @ X - B) / torch.linalg.norm(B)).item()
    return BenchmarkResult(layout, m, n, str(dtype).replace('torch.', ''),
                           t1 - t0, t2 - t1, residual)


def main():
    parser = argparse.ArgumentParser(description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument('--sizes', type=int, nargs='+', default=[32, 64, 128, 256])
    parser.add_argument('--dtype', default='float64', choices=['float64', 'complex128'])
    args = parser.parse_args()
    dtype = getattr(torch, args.dtype)

    results: List[BenchmarkResult] = []
    for n in args.sizes:
        for layout in ['tensor', 'dist']:
            r = run_one(layout, n // 2, n, dtype)
            results.append(r)
            print(f"{layout:>6} {r.m:>5}x{r.n:<5} factor {r.factor_time * 1e3:9.2f} ms  "
                  f"solve {r.solve_time * 1e3:9.2f} ms  residual {r.residual:.2e}")

    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    out = OUTPUT_DIR / f"results_{args.dtype}.json"
    with open(out, 'w') as f:
        json.dump([asdict(r) for r in results], f, indent=2)
    print(f"\nSaved to {out}")


if __name__ == "__main__":
    main()
