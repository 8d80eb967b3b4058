#!/usr/bin/env python
"""
Distribution invariance of the distributed RQ factorization and solves.

Every process factors the same matrix both serially and as a DistMatrix over
a 2-D grid, and checks that R, t, d, Q and the solutions agree with the
serial result for every grid shape.

Run with:
    pytest tests/test_distributed_multiprocess.py

Or simply:
    python tests/test_distributed_multiprocess.py
"""

import os
import socket
import sys
import pytest
import torch
import torch.distributed as dist
from torch.multiprocessing import spawn

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from torch_dla import Grid, DistMatrix, ErrorKind, rq, gaussian, full_row_rank

WORLD_SIZE = 4


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def _check_grid(grid: Grid, m: int, n: int, dtype):
    # the same generator seed on every process gives the same global matrices
    gen = torch.Generator().manual_seed(1000 + 7 * m + n)
    A = full_row_rank(m, n, dtype=dtype, generator=gen) if m <= n else \
        gaussian((m, n), dtype, generator=gen)

    F = A.clone()
    t, d = rq.factorize(F)

    D = DistMatrix.from_global(grid, A)
    tD, dD = rq.factorize(D)
    torch.testing.assert_close(tD, t)
    torch.testing.assert_close(dD, d)
    torch.testing.assert_close(D.to_global(), F)
    torch.testing.assert_close(rq.explicit_q(D, tD, dD).to_global(), rq.explicit_q(F, t, d))

    # apply Q from both sides
    X = gaussian((n, 3), dtype, generator=gen)
    XD = DistMatrix.from_global(grid, X)
    rq.apply_q('left', 'transpose', D, tD, dD, XD, block_size=2)
    torch.testing.assert_close(XD.to_global(), rq.apply_q('left', 'transpose', F, t, d, X.clone()))
    Y = gaussian((3, n), dtype, generator=gen)
    YD = DistMatrix.from_global(grid, Y)
    rq.apply_q('right', 'normal', D, tD, dD, YD)
    torch.testing.assert_close(YD.to_global(), rq.apply_q('right', 'normal', F, t, d, Y.clone()))

    for orientation in ['normal', 'adjoint', 'transpose']:
        B = gaussian((m if orientation == 'normal' else n, 2), dtype, generator=gen)
        BD = DistMatrix.from_global(grid, B)
        res = rq.try_solve_after(orientation, D, tD, dD, BD)
        if m > n:
            assert res.kind == ErrorKind.RANK_DEFICIENT
            assert grid.agree(not res.ok)
            continue
        assert not grid.agree(not res.ok)
        torch.testing.assert_close(res.value.to_global(),
                                   rq.solve_after(orientation, F, t, d, B))


def _check_layouts(grid: Grid):
    gen = torch.Generator().manual_seed(77)
    A = gaussian((5, 8), torch.complex128, generator=gen)
    F = A.clone()
    t, d = rq.factorize(F)
    for layout in [('MC', 'STAR'), ('STAR', 'MR'), ('STAR', 'STAR')]:
        D = DistMatrix.from_global(grid, A, *layout, col_align=1, row_align=1)
        tD, dD = rq.factorize(D)
        assert D.distribution == layout
        torch.testing.assert_close(tD, t)
        torch.testing.assert_close(dD, d)
        torch.testing.assert_close(D.to_global(), F)


def _check_tiny_rows(grid: Grid):
    # squares of these entries underflow
    A = torch.tensor([[1.0, 2.0, 3.0, 4.0, 5.0],
                      [1e-170] * 5], dtype=torch.float64)
    F = A.clone()
    t, d = rq.factorize(F)
    D = DistMatrix.from_global(grid, A)
    tD, dD = rq.factorize(D)
    assert tD[1] != 0
    torch.testing.assert_close(tD, t)
    torch.testing.assert_close(D.to_global()[1], F[1], rtol=1e-12, atol=0)
    recon = rq.explicit_r(D).to_global() @ rq.explicit_q(D, tD, dD).to_global()
    torch.testing.assert_close(recon[1], A[1], rtol=1e-12, atol=0)


def run_distributed_test(rank: int, world_size: int, port: int, height: int):
    os.environ['MASTER_ADDR'] = '127.0.0.1'
    os.environ['MASTER_PORT'] = str(port)
    dist.init_process_group('gloo', rank=rank, world_size=world_size)
    try:
        grid = Grid(height, world_size // height, verbose=True)
        assert grid.rank_of(grid.row, grid.col) == rank

        # views and redistribution
        A = torch.arange(35, dtype=torch.float64).reshape(5, 7)
        D = DistMatrix.from_global(grid, A)
        assert D.local_height == (5 - grid.row + height - 1) // height
        torch.testing.assert_close(D.view((1, 4), (2, 7)).to_global(), A[1:4, 2:7])
        torch.testing.assert_close(D.redistribute('STAR', 'MR').to_global(), A)
        torch.testing.assert_close(D.redistribute('MC', 'STAR', col_align=1).to_global(), A)
        assert D.get(4, 6) == 34.0
        top = torch.tensor([float(rank)])
        grid.all_reduce_max(top, over='all')
        assert top.item() == world_size - 1

        for (m, n), dtype in [((3, 7), torch.float64), ((6, 6), torch.complex128),
                              ((5, 9), torch.complex128), ((7, 4), torch.float64)]:
            _check_grid(grid, m, n, dtype)
        _check_layouts(grid)
        _check_tiny_rows(grid)
        grid.barrier()
    finally:
        dist.destroy_process_group()


@pytest.mark.skipif(not dist.is_available(), reason="torch.distributed is not available")
@pytest.mark.parametrize('height', [1, 2, 4])
def test_distribution_invariance(height):
    spawn(run_distributed_test, args=(WORLD_SIZE, _free_port(), height),
          nprocs=WORLD_SIZE, join=True)


if __name__ == '__main__':
    for h in [1, 2, 4]:
        spawn(run_distributed_test, args=(WORLD_SIZE, _free_port(), h),
              nprocs=WORLD_SIZE, join=True)
