import pytest
import torch
import numpy as np
from scipy.linalg import pinv
from itertools import product
import sys
sys.path.append("..")
from torch_dla import (
    Grid,
    DistMatrix,
    ErrorKind,
    ConformityError,
    GridMismatchError,
    RankDeficiencyError,
    SingularMatrixError,
    rq,
    gaussian,
    full_row_rank,
)

DTYPES = [torch.float64, torch.complex128]


def factor(A):
    F = A.clone()
    t, d = rq.factorize(F)
    return F, t, d


@pytest.mark.parametrize(['shape', 'dtype', 'p'],
                         product([(1, 1), (3, 7), (5, 5), (2, 9)], DTYPES, [1, 3]))
def test_minimum_norm_solve(shape, dtype, p):
    m, n = shape
    gen = torch.Generator().manual_seed(m + 10 * n + p)
    A = full_row_rank(m, n, cond=20.0, dtype=dtype, generator=gen)
    B = gaussian((m, p), dtype, generator=gen)
    F, t, d = factor(A)
    X = rq.solve_after('normal', F, t, d, B)

    assert X.shape == (n, p)
    torch.testing.assert_close(A @ X, B)
    X_ref = torch.from_numpy(pinv(A.numpy()) @ B.numpy())
    torch.testing.assert_close(X, X_ref)
    # minimum norm: X lies in the row space of A
    torch.testing.assert_close(X, A.mH @ torch.linalg.solve(A @ A.mH, B))


@pytest.mark.parametrize(['orientation', 'dtype', 'shape'],
                         product(['adjoint', 'transpose'], DTYPES, [(3, 7), (4, 4)]))
def test_least_squares_solve(orientation, dtype, shape):
    m, n = shape
    gen = torch.Generator().manual_seed(42)
    A = full_row_rank(m, n, dtype=dtype, generator=gen)
    B = gaussian((n, 2), dtype, generator=gen)
    F, t, d = factor(A)
    X = rq.solve_after(orientation, F, t, d, B)

    assert X.shape == (m, 2)
    opA = A.mH if orientation == 'adjoint' else A.mT
    X_ref, *_ = np.linalg.lstsq(opA.resolve_conj().numpy(), B.numpy(), rcond=None)
    torch.testing.assert_close(X, torch.from_numpy(X_ref))


def test_solve_vector_rhs():
    A = full_row_rank(3, 5, generator=torch.Generator().manual_seed(1))
    b = torch.randn(3, dtype=torch.float64)
    F, t, d = factor(A)
    x = rq.solve_after('normal', F, t, d, b)
    assert x.shape == (5,)
    torch.testing.assert_close(A @ x, b)


def test_solve_does_not_touch_inputs():
    A = full_row_rank(3, 5, generator=torch.Generator().manual_seed(2))
    B = torch.randn(5, 2, dtype=torch.float64)
    F, t, d = factor(A)
    F0, B0 = F.clone(), B.clone()
    rq.solve_after('adjoint', F, t, d, B)
    torch.testing.assert_close(F, F0)
    torch.testing.assert_close(B, B0)


@pytest.mark.parametrize('orientation', ['normal', 'adjoint', 'transpose'])
def test_rejects_wide_factorization_of_tall_matrix(orientation):
    # m = n + 1 is rejected for every orientation
    A = torch.randn(4, 3, dtype=torch.float64)
    F, t, d = factor(A)
    B = torch.randn(4, 1, dtype=torch.float64)
    with pytest.raises(RankDeficiencyError) as e:
        rq.solve_after(orientation, F, t, d, B)
    assert e.value.kind == ErrorKind.RANK_DEFICIENT


def test_rejects_nonconforming_rhs():
    F, t, d = factor(full_row_rank(3, 5))
    with pytest.raises(ConformityError) as e:
        rq.solve_after('normal', F, t, d, torch.zeros(5, 1, dtype=torch.float64))
    assert e.value.kind == ErrorKind.NON_CONFORMING
    with pytest.raises(ConformityError):
        rq.solve_after('adjoint', F, t, d, torch.zeros(3, 1, dtype=torch.float64))


def test_singular_r():
    A = torch.tensor([[0.0, 0.0, 0.0],
                      [1.0, 2.0, 3.0]], dtype=torch.float64)
    F, t, d = factor(A)
    with pytest.raises(SingularMatrixError) as e:
        rq.solve_after('normal', F, t, d, torch.ones(2, 1, dtype=torch.float64))
    assert e.value.index == 0
    # without the check the solve goes through and yields non-finite values
    X = rq.solve_after('normal', F, t, d, torch.ones(2, 1, dtype=torch.float64),
                       check_singular=False)
    assert not torch.isfinite(X).all()


def test_try_solve_after():
    F, t, d = factor(full_row_rank(2, 4))
    res = rq.try_solve_after('normal', F, t, d, torch.ones(2, 1, dtype=torch.float64))
    assert res.ok and res.kind is None
    assert res.unwrap().shape == (4, 1)

    F, t, d = factor(torch.randn(4, 2, dtype=torch.float64))
    res = rq.try_solve_after('normal', F, t, d, torch.ones(4, 1, dtype=torch.float64))
    assert not res.ok
    assert res.kind == ErrorKind.RANK_DEFICIENT
    with pytest.raises(RankDeficiencyError):
        res.unwrap()


@pytest.mark.parametrize(['orientation', 'dtype'],
                         product(['normal', 'adjoint', 'transpose'], DTYPES))
def test_solve_on_single_process_grid(orientation, dtype):
    grid = Grid()
    m, n = 3, 6
    gen = torch.Generator().manual_seed(9)
    A = full_row_rank(m, n, dtype=dtype, generator=gen)
    B = gaussian((m if orientation == 'normal' else n, 2), dtype, generator=gen)
    F, t, d = factor(A)

    D = DistMatrix.from_global(grid, A)
    tD, dD = rq.factorize(D)
    XD = rq.solve_after(orientation, D, tD, dD, DistMatrix.from_global(grid, B))
    torch.testing.assert_close(XD.to_global(), rq.solve_after(orientation, F, t, d, B))


def test_solve_rejects_mixed_grids():
    A = full_row_rank(2, 3)
    D = DistMatrix.from_global(Grid(), A)
    t, d = rq.factorize(D)
    B = DistMatrix.from_global(Grid(), torch.ones(2, 1, dtype=torch.float64))
    with pytest.raises(GridMismatchError):
        rq.solve_after('normal', D, t, d, B)
