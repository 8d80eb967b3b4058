"""
Norms computed from singular values.

Both norms take the singular values from ``torch.linalg.svdvals``. A
``DistMatrix`` is gathered first, so every process returns the same value.
"""

import torch
from typing import Literal, Union

from .distributed import DistMatrix

UpperOrLower = Literal['upper', 'lower']


def _gather(A: Union[torch.Tensor, DistMatrix]) -> torch.Tensor:
    return A.to_global() if isinstance(A, DistMatrix) else A


def two_norm(A: Union[torch.Tensor, DistMatrix]) -> torch.Tensor:
    """
    Spectral norm: the largest singular value of ``A``.

    Parameters
    ----------
    A : torch.Tensor or DistMatrix
        [m, n]

    Returns
    -------
    torch.Tensor
        real scalar
    """
    A = _gather(A)
    if A.numel() == 0:
        return torch.zeros((), dtype=A.real.dtype if A.is_complex() else A.dtype)
    return torch.linalg.svdvals(A).max()


def make_hermitian(uplo: UpperOrLower, A: torch.Tensor) -> torch.Tensor:
    """Hermitian matrix defined by the ``uplo`` triangle of ``A`` (diagonal made real)."""
    if uplo == 'lower':
        tri, strict = torch.tril(A), torch.tril(A, -1)
    elif uplo == 'upper':
        tri, strict = torch.triu(A), torch.triu(A, 1)
    else:
        raise ValueError(f"uplo must be 'upper' or 'lower', got {uplo!r}")
    H = tri + strict.mH
    if H.is_complex():
        H.diagonal().imag.zero_()
    return H


def hermitian_schatten_norm(uplo: UpperOrLower, A: Union[torch.Tensor, DistMatrix],
                            p: float) -> torch.Tensor:
    """
    Schatten p-norm of the Hermitian matrix stored in the ``uplo`` triangle.

    Parameters
    ----------
    uplo : {'upper', 'lower'}
    A : torch.Tensor or DistMatrix
        [n, n]
    p : float
        p >= 1

    Returns
    -------
    torch.Tensor
        ``(sum_i s_i^p)^(1/p)``
    """
    if p < 1:
        raise ValueError(f"p must be >= 1, got {p}")
    s = torch.linalg.svdvals(make_hermitian(uplo, _gather(A)))
    # smallest first
    total = torch.flip(s, (0,)).pow(p).sum()
    return total.pow(1.0 / p)
