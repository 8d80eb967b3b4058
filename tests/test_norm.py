import pytest
import torch
import numpy as np
from itertools import product
import sys
sys.path.append("..")
from torch_dla import (
    Grid,
    DistMatrix,
    two_norm,
    hermitian_schatten_norm,
    gaussian,
    full_row_rank,
)
from torch_dla.norm import make_hermitian


@pytest.mark.parametrize(['shape', 'dtype'],
                         product([(4, 4), (3, 8), (8, 3)], [torch.float64, torch.complex128]))
def test_two_norm(shape, dtype):
    A = gaussian(shape, dtype, generator=torch.Generator().manual_seed(0))
    expect = np.linalg.norm(A.numpy(), 2)
    assert two_norm(A).item() == pytest.approx(expect)
    assert two_norm(DistMatrix.from_global(Grid(), A)).item() == pytest.approx(expect)


def test_two_norm_empty():
    assert two_norm(torch.zeros(0, 3, dtype=torch.float64)).item() == 0


@pytest.mark.parametrize(['uplo', 'dtype'],
                         product(['upper', 'lower'], [torch.float64, torch.complex128]))
def test_make_hermitian(uplo, dtype):
    A = gaussian((5, 5), dtype, generator=torch.Generator().manual_seed(1))
    H = make_hermitian(uplo, A)
    torch.testing.assert_close(H, H.mH)
    tri = torch.triu if uplo == 'upper' else torch.tril
    torch.testing.assert_close(tri(H, 1 if uplo == 'upper' else -1),
                               tri(A, 1 if uplo == 'upper' else -1))


@pytest.mark.parametrize(['uplo', 'p', 'dtype'],
                         product(['upper', 'lower'], [1, 2, 3.5], [torch.float64, torch.complex128]))
def test_hermitian_schatten_norm(uplo, p, dtype):
    A = gaussian((6, 6), dtype, generator=torch.Generator().manual_seed(2))
    H = make_hermitian(uplo, A).numpy()
    w = np.abs(np.linalg.eigvalsh(H))
    expect = np.sum(w ** p) ** (1.0 / p)
    assert hermitian_schatten_norm(uplo, A, p).item() == pytest.approx(expect)
    D = DistMatrix.from_global(Grid(), A)
    assert hermitian_schatten_norm(uplo, D, p).item() == pytest.approx(expect)


def test_schatten_two_is_frobenius():
    A = gaussian((4, 4), torch.float64, generator=torch.Generator().manual_seed(3))
    H = make_hermitian('lower', A)
    torch.testing.assert_close(hermitian_schatten_norm('lower', A, 2), torch.linalg.norm(H))


def test_schatten_rejects_small_p():
    with pytest.raises(ValueError):
        hermitian_schatten_norm('upper', torch.eye(2, dtype=torch.float64), 0.5)


@pytest.mark.parametrize(['m', 'n', 'cond'], [(3, 5, 10.0), (4, 4, 1e3), (1, 6, 1.0)])
def test_full_row_rank(m, n, cond):
    A = full_row_rank(m, n, cond=cond, generator=torch.Generator().manual_seed(4))
    s = torch.linalg.svdvals(A)
    assert s.shape == (m,)
    assert (s[0] / s[-1]).item() == pytest.approx(cond)


def test_gaussian_complex_is_seeded():
    a = gaussian((3, 2), torch.complex128, generator=torch.Generator().manual_seed(5))
    b = gaussian((3, 2), torch.complex128, generator=torch.Generator().manual_seed(5))
    assert a.dtype == torch.complex128
    torch.testing.assert_close(a, b)
    assert a.imag.abs().sum() > 0
