"""
BLAS-like kernels used by the factorizations.

These are thin wrappers around torch. They accept plain tensors and, where
noted, ``DistMatrix`` operands (acting on the local buffers).
"""

import torch
from typing import Callable, Literal, Union

from .check import check_nonsingular, check_same_grid, ConformityError
from .distributed import DistMatrix

Side = Literal['left', 'right']
Orientation = Literal['normal', 'transpose', 'adjoint']
UpperOrLower = Literal['upper', 'lower']

Matrix = Union[torch.Tensor, DistMatrix]


def _local(A: Matrix) -> torch.Tensor:
    return A.matrix if isinstance(A, DistMatrix) else A


def gemv(alpha, A: torch.Tensor, x: torch.Tensor, beta, y: torch.Tensor) -> torch.Tensor:
    """
    ``y := alpha A x + beta y`` in place, with ``x`` read as a vector in
    whatever orientation it is stored.

    Parameters
    ----------
    A : torch.Tensor
        [m, k]
    x : torch.Tensor
        [k], [k, 1] or [1, k]
    y : torch.Tensor
        [m] or [m, 1]
    """
    prod = A @ x.reshape(-1)
    if beta == 0:
        y.copy_((alpha * prod).reshape(y.shape))
    else:
        y.mul_(beta).add_((alpha * prod).reshape(y.shape))
    return y


def ger(alpha, x: torch.Tensor, y: torch.Tensor, A: torch.Tensor) -> torch.Tensor:
    """``A := A + alpha x y^H`` in place; ``x`` and ``y`` are read as vectors."""
    A.add_(alpha * torch.outer(x.reshape(-1), y.reshape(-1).conj()))
    return A


def conjugate(A: Matrix) -> Matrix:
    """Conjugate in place (no-op on real fields)."""
    if isinstance(A, DistMatrix):
        return A.conjugate()
    if A.is_complex():
        A.copy_(A.conj_physical())
    return A


def entrywise_map(x: torch.Tensor, fn: Callable[[torch.Tensor], torch.Tensor]) -> torch.Tensor:
    """``x := fn(x)`` in place, ``fn`` acting on whole tensors."""
    x.copy_(fn(x))
    return x


def sign(x: torch.Tensor) -> torch.Tensor:
    """+1 for non-negative entries (zero included), -1 otherwise."""
    one = torch.ones((), dtype=x.dtype, device=x.device)
    return torch.where(x >= 0, one, -one)


def real_part_of_diagonal(A: Matrix, offset: int = 0) -> torch.Tensor:
    if isinstance(A, DistMatrix):
        return A.real_part_of_diagonal(offset)
    diag = torch.diagonal(A, offset)
    return (diag.real if diag.is_complex() else diag).clone()


def diagonal_scale_trapezoid(side: Side, uplo: UpperOrLower, d: torch.Tensor,
                             A: Matrix, offset: int = 0) -> Matrix:
    """
    Scale the trapezoid of ``A`` by ``diag(d)``.

    Only entries ``(i, j)`` with ``j - i >= offset`` (upper) or
    ``j - i <= offset`` (lower) are touched. ``side='right'`` scales column
    ``j`` by ``d[j]``, ``side='left'`` scales row ``i`` by ``d[i]``.

    Parameters
    ----------
    d : torch.Tensor
        [width] for the right side, [height] for the left side, replicated.
    A : torch.Tensor or DistMatrix
    """
    if isinstance(A, DistMatrix):
        rows, cols = A.global_rows(), A.global_cols()
    else:
        rows = torch.arange(A.shape[0], device=A.device)
        cols = torch.arange(A.shape[1], device=A.device)
    local = _local(A)
    if local.numel() == 0:
        return A
    band = cols[None, :] - rows[:, None]
    mask = band >= offset if uplo == 'upper' else band <= offset
    d = d.to(device=local.device, dtype=local.dtype)
    if side == 'right':
        factor = d[cols][None, :].expand_as(local)
    else:
        factor = d[rows][:, None].expand_as(local)
    one = torch.ones((), dtype=local.dtype, device=local.device)
    local.mul_(torch.where(mask, factor, one))
    return A


def trsm(orientation: Orientation, T: Matrix, X: Matrix, alpha=1,
         uplo: UpperOrLower = 'upper', unit: bool = False,
         check_singular: bool = False) -> Matrix:
    """
    Left triangular solve ``X := alpha op(T)^{-1} X`` in place.

    Parameters
    ----------
    orientation : {'normal', 'transpose', 'adjoint'}
        ``op(T)`` is ``T``, ``T^T`` or ``T^H``.
    T : torch.Tensor or DistMatrix
        [k, k] triangular matrix; only the ``uplo`` triangle is read.
    X : torch.Tensor or DistMatrix
        [k, p] right-hand sides, overwritten with the solution.
    check_singular : bool
        Raise ``SingularMatrixError`` on an exactly zero diagonal entry
        instead of producing inf/nan.

    Notes
    -----
    For ``DistMatrix`` operands the triangle and the right-hand sides are
    replicated, the solve is done redundantly and each process keeps its own
    entries of ``X``.
    """
    if isinstance(X, DistMatrix):
        check_same_grid(T, X)
        Tg = T.to_global()
        Xg = X.to_global()
        _trsm_local(orientation, Tg, Xg, alpha, uplo, unit, check_singular)
        X.matrix.copy_(Xg[X.global_rows()][:, X.global_cols()])
        return X
    return _trsm_local(orientation, T, X, alpha, uplo, unit, check_singular)


def _trsm_local(orientation, T, X, alpha, uplo, unit, check_singular):
    if T.shape[0] != T.shape[1]:
        raise ConformityError("T", tuple(T.shape), "[k, k]")
    if T.shape[1] != X.shape[0]:
        raise ConformityError("X", tuple(X.shape), f"[{T.shape[1]}, ...]")
    if X.numel() == 0:
        return X
    if check_singular and not unit:
        check_nonsingular(torch.diagonal(T))
    upper = uplo == 'upper'
    if orientation == 'normal':
        op = T
    elif orientation == 'transpose':
        op, upper = T.mT, not upper
    elif orientation == 'adjoint':
        op, upper = T.mH, not upper
    else:
        raise ValueError(f"Unknown orientation: {orientation}")
    op = torch.triu(op) if upper else torch.tril(op)
    sol = torch.linalg.solve_triangular(op, alpha * X, upper=upper, left=True,
                                        unitriangular=unit)
    X.copy_(sol)
    return X
