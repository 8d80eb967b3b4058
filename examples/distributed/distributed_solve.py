#!/usr/bin/env python
"""
Distributed Minimum-Norm Solve Example

Factors a wide matrix A = R Q over a 2-D process grid and solves
A x = b for the minimum-norm x.

Usage:
    torchrun --standalone --nproc_per_node=4 distributed_solve.py
"""

import torch
import torch.distributed as dist
from torch_dla import Grid, DistMatrix, rq, full_row_rank


def main():
    # Initialize distributed
    dist.init_process_group(backend='gloo')
    rank = dist.get_rank()
    world_size = dist.get_world_size()

    if rank == 0:
        print("=" * 60)
        print("Distributed RQ solve: A @ x = b")
        print(f"  World size: {world_size}")
        print("=" * 60)

    grid = Grid(verbose=True)

    # Problem size
    m, n = 60, 100

    # Same seed on every rank, so every rank holds the same global problem
    gen = torch.Generator().manual_seed(0)
    A = full_row_rank(m, n, cond=100.0, generator=gen)
    b = torch.randn(m, 1, dtype=torch.float64, generator=gen)

    AD = DistMatrix.from_global(grid, A)
    bD = DistMatrix.from_global(grid, b)
    print(f"[Rank {rank}] grid coord ({grid.row}, {grid.col}), "
          f"local block {AD.local_height}x{AD.local_width}")
    grid.barrier()

    t, d = rq.factorize(AD)
    res = rq.try_solve_after('normal', AD, t, d, bD)
    if grid.agree(not res.ok):
        if rank == 0:
            print(f"Solve failed: {res.error}")
        dist.destroy_process_group()
        return

    x = res.value.to_global()
    residual = torch.linalg.norm(A @ x - b)

    if rank == 0:
        print(f"\n||A x - b|| = {residual:.3e}")
        print(f"||x||       = {x.norm():.4f}")
        print("\n" + "=" * 60)
        print("Distributed solve completed!")
        print("=" * 60)

    dist.destroy_process_group()


if __name__ == "__main__":
    main()
