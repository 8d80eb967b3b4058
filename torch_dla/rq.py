"""
RQ factorization by Householder reflectors.

``factorize`` overwrites an ``m x n`` matrix ``A`` with ``A = R Q``:

- ``R`` is upper trapezoidal and occupies the rightmost ``min(m, n)`` columns
  (entries ``(i, j)`` with ``j - i >= n - m``), and the real part of its
  diagonal is non-negative.
- ``Q = D H_0^H H_1^H ... H_{K-1}^H`` is unitary, with ``K = min(m, n)``,
  ``H_k = I - t[k] u_k u_k^H`` and ``D`` the identity except for ``d`` on its
  last ``K`` diagonal entries. Reflector ``k`` is stored in row
  ``k + m - K``, left of column ``k + n - K``, with an implicit trailing one.

Reflectors are formed from the last one down to the first, each zeroing a row
segment to the left of its pivot, and each followed by a rank-one trailing
update of the rows above.

Example
-------
>>> import torch
>>> from torch_dla import rq
>>> A = torch.randn(3, 5, dtype=torch.float64)
>>> F = A.clone()
>>> t, d = rq.factorize(F)
>>> b = torch.randn(3, dtype=torch.float64)
>>> X = rq.solve_after('normal', F, t, d, b)   # minimum-norm solution of A X = b
"""

import warnings
import torch
from typing import Literal, Tuple, Union

from .blas import (
    conjugate,
    diagonal_scale_trapezoid,
    entrywise_map,
    gemv,
    ger,
    real_part_of_diagonal,
    sign,
    trsm,
)
from .check import (
    ConformityError,
    DLAError,
    Result,
    check_conformity,
    check_full_row_rank,
    check_same_grid,
)
from .distributed import DistMatrix
from .reflector import right_reflector

Side = Literal['left', 'right']
Orientation = Literal['normal', 'transpose', 'adjoint']

Matrix = Union[torch.Tensor, DistMatrix]

DEFAULT_BLOCK_SIZE = 32


def _check_precision(dtype: torch.dtype):
    if dtype in (torch.float32, torch.complex64, torch.float16, torch.bfloat16):
        warnings.warn("You'd better use float64 to maintain good precision")


def _check_orientation(orientation: str):
    if orientation not in ('normal', 'transpose', 'adjoint'):
        raise ValueError(f"orientation must be 'normal', 'transpose' or 'adjoint', got {orientation!r}")


# ----------------------------------------------------------------------
# Panel factorization
# ----------------------------------------------------------------------

def panel_householder(A: Matrix) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    Unblocked RQ factorization of ``A`` in place.

    Parameters
    ----------
    A : torch.Tensor or DistMatrix
        [m, n] matrix, overwritten with ``R`` and the reflectors.

    Returns
    -------
    t : torch.Tensor
        [min(m, n)] reflector scalars, replicated on every process
    d : torch.Tensor
        [min(m, n)] real signs (+1/-1) used to make the real part of the
        diagonal of ``R`` non-negative, replicated on every process
    """
    if isinstance(A, DistMatrix):
        if A.distribution == ('MC', 'MR'):
            return _panel_householder_dist(A)
        # factor an [MC, MR] working copy and write the result back
        W = A.redistribute('MC', 'MR')
        t, d = _panel_householder_dist(W)
        A.matrix.copy_(W.align_with(A).locked_matrix)
        return t, d
    return _panel_householder_local(A)


def _panel_householder_local(A: torch.Tensor):
    m, n = A.shape
    min_dim = min(m, n)
    i_off, j_off = m - min_dim, n - min_dim
    t = torch.zeros(min_dim, dtype=A.dtype, device=A.device)

    for k in range(min_dim - 1, -1, -1):
        ki, kj = k + i_off, k + j_off
        a10 = A[ki:ki + 1, :kj]
        alpha11 = A[ki:ki + 1, kj:kj + 1]
        A0L = A[:ki, :kj + 1]
        a1L = A[ki:ki + 1, :kj + 1]

        t[k] = right_reflector(alpha11, a10)

        # a1L = [v, 1] while updating the rows above
        alpha = alpha11.item()
        alpha11.fill_(1)
        z01 = torch.zeros((ki, 1), dtype=A.dtype, device=A.device)
        gemv(1, A0L, a1L, 0, z01)
        ger(-t[k].item(), z01, a1L, A0L)
        alpha11.fill_(alpha)

    return t, _normalize_signs(A, m, n, min_dim)


def _panel_householder_dist(A: DistMatrix):
    g = A.grid
    m, n = A.height, A.width
    min_dim = min(m, n)
    i_off, j_off = m - min_dim, n - min_dim
    t = torch.zeros(min_dim, dtype=A.dtype, device=A.device)

    for k in range(min_dim - 1, -1, -1):
        ki, kj = k + i_off, k + j_off
        a10 = A.view((ki, ki + 1), (0, kj))
        alpha11 = A.view((ki, ki + 1), (kj, kj + 1))
        A0L = A.view((0, ki), (0, kj + 1))
        a1L = A.view((ki, ki + 1), (0, kj + 1))

        tau = right_reflector(alpha11, a10)
        t[k] = tau

        # Only the owner of the pivot holds it; the temporary 1 reaches the
        # other processes when a1L is replicated below.
        alpha = None
        if alpha11.is_local(0, 0):
            alpha = alpha11.get_local(0, 0)
            alpha11.set_local(0, 0, 1)

        # A0L := A0L - tau (A0L a1L^T) conj(a1L)
        a1L_STAR_MR = a1L.redistribute('STAR', 'MR', row_align=A0L.row_align)
        z01_MC_STAR = DistMatrix.zeros(g, ki, 1, A.dtype, 'MC', 'STAR',
                                       col_align=A0L.col_align)
        gemv(1, A0L.matrix, a1L_STAR_MR.locked_matrix, 0, z01_MC_STAR.matrix)
        g.all_reduce_sum(z01_MC_STAR.matrix, over='row')
        ger(-tau, z01_MC_STAR.locked_matrix, a1L_STAR_MR.locked_matrix, A0L.matrix)

        if alpha is not None:
            alpha11.set_local(0, 0, alpha)

    return t, _normalize_signs(A, m, n, min_dim)


def _normalize_signs(A: Matrix, m: int, n: int, min_dim: int):
    """Flip columns of R so that the real part of its diagonal is non-negative."""
    i_off, j_off = m - min_dim, n - min_dim
    if isinstance(A, DistMatrix):
        R = A.view((0, m), (j_off, n))
    else:
        R = A[:, j_off:]
    d = real_part_of_diagonal(R, -i_off)
    entrywise_map(d, sign)
    diagonal_scale_trapezoid('right', 'upper', d, R, -i_off)
    return d


def factorize(A: Matrix) -> Tuple[torch.Tensor, torch.Tensor]:
    """
    RQ factorization ``A = R Q`` in place.

    Parameters
    ----------
    A : torch.Tensor or DistMatrix
        [m, n] matrix, overwritten with the reflectors and ``R``.

    Returns
    -------
    t : torch.Tensor
        [min(m, n)] reflector scalars
    d : torch.Tensor
        [min(m, n)] sign corrections of the diagonal of ``R``

    Notes
    -----
    For a ``DistMatrix``, every process of the grid must call this with the
    same global shape; each reflector costs one reduction over the grid row
    communicator for the trailing update.
    """
    _check_precision(A.dtype)
    return panel_householder(A)


# ----------------------------------------------------------------------
# Applying Q
# ----------------------------------------------------------------------

def _scale_by_signs(side: Side, d: torch.Tensor, X: Matrix, offset: int):
    """Scale rows (left) or columns (right) ``offset + k`` of X by ``d[k]``."""
    if isinstance(X, DistMatrix):
        idx = X.global_rows() if side == 'left' else X.global_cols()
        local = X.matrix
    else:
        n = X.shape[0] if side == 'left' else X.shape[1]
        idx = torch.arange(n, device=X.device)
        local = X
    if local.numel() == 0:
        return
    scale = torch.ones(idx.shape[0], dtype=local.dtype, device=local.device)
    mask = idx >= offset
    scale[mask] = d.to(device=local.device, dtype=local.dtype)[idx[mask] - offset]
    if side == 'left':
        local.mul_(scale[:, None])
    else:
        local.mul_(scale[None, :])


def _apply_reflector(side: Side, coeff, u: torch.Tensor, X: torch.Tensor):
    """``X := (I - coeff u u^H) X`` (left) or ``X := X (I - coeff u u^H)`` (right)."""
    if side == 'left':
        w = torch.zeros(X.shape[1], dtype=X.dtype, device=X.device)
        gemv(1, X.mH, u, 0, w)
        ger(-coeff, u, w, X)
    else:
        w = torch.zeros(X.shape[0], dtype=X.dtype, device=X.device)
        gemv(1, X, u, 0, w)
        ger(-coeff, w, u, X)


def apply_q(side: Side, orientation: Orientation, A: Matrix, t: torch.Tensor,
            d: torch.Tensor, X: Matrix, block_size: int = DEFAULT_BLOCK_SIZE) -> Matrix:
    """
    Apply the implicit ``Q`` of an RQ factorization to ``X`` in place.

    Parameters
    ----------
    side : {'left', 'right'}
        ``op(Q) X`` or ``X op(Q)``.
    orientation : {'normal', 'transpose', 'adjoint'}
        ``op(Q)`` is ``Q``, ``Q^T`` or ``Q^H``.
    A : torch.Tensor or DistMatrix
        [m, n] factored matrix holding the reflectors.
    t, d : torch.Tensor
        Outputs of ``factorize``.
    X : torch.Tensor or DistMatrix
        [n, p] (left) or [p, n] (right) matrix, overwritten.
    block_size : int
        Number of reflectors replicated at once in the distributed case.

    Returns
    -------
    X
    """
    if side not in ('left', 'right'):
        raise ValueError(f"side must be 'left' or 'right', got {side!r}")
    _check_orientation(orientation)
    if orientation == 'transpose':
        # Q^T X = conj(Q^H conj(X)) and X Q^T = conj(conj(X) Q^H)
        conjugate(X)
        apply_q(side, 'adjoint', A, t, d, X, block_size)
        conjugate(X)
        return X

    m, n = (A.height, A.width) if isinstance(A, DistMatrix) else tuple(A.shape)
    min_dim = min(m, n)
    i_off, j_off = m - min_dim, n - min_dim
    x_shape = X.shape if isinstance(X, DistMatrix) else tuple(X.shape)
    if side == 'left':
        check_conformity("X", x_shape[0], n)
    elif x_shape[1] != n:
        raise ConformityError("X", x_shape, f"[..., {n}]")
    if t.shape[0] != min_dim or d.shape[0] != min_dim:
        raise ConformityError("t", tuple(t.shape), f"[{min_dim}]")

    normal = orientation == 'normal'
    on_left = side == 'left'
    # Q = D G_0 ... G_{K-1} with G_k = H_k^H
    if normal == on_left:
        order = list(range(min_dim - 1, -1, -1))
    else:
        order = list(range(min_dim))
    coeffs = t.conj() if normal else t
    signs_first = normal != on_left

    if signs_first:
        _scale_by_signs(side, d, X, j_off)
    if isinstance(X, DistMatrix):
        check_same_grid(A, X)
        _apply_reflectors_dist(side, A, coeffs, order, X, i_off, j_off, block_size)
    else:
        for k in order:
            ki, kj = k + i_off, k + j_off
            u = A[ki, :kj + 1].clone()
            u[kj] = 1
            Xk = X[:kj + 1] if on_left else X[:, :kj + 1]
            _apply_reflector(side, coeffs[k].item(), u, Xk)
    if not signs_first:
        _scale_by_signs(side, d, X, j_off)
    return X


def _apply_reflectors_dist(side, A, coeffs, order, X, i_off, j_off, block_size):
    """
    Apply reflectors ``order`` to a distributed ``X``.

    Each block of reflector rows is replicated once; each reflector then
    costs one local product, one reduction over the communicator spanning
    the contracted dimension, and one local rank-one update.
    """
    g = X.grid
    n = A.width
    for start in range(0, len(order), block_size):
        block = order[start:start + block_size]
        lo, hi = min(block) + i_off, max(block) + i_off + 1
        V = A.locked_view((lo, hi), (0, n)).redistribute('STAR', 'STAR')
        for k in block:
            ki, kj = k + i_off, k + j_off
            u = V.locked_matrix[ki - lo, :kj + 1].clone()
            u[kj] = 1
            coeff = coeffs[k].item()
            if side == 'left':
                Xt = X.view((0, kj + 1), (0, X.width))
                u_loc = u[Xt.global_rows()]
                w = Xt.matrix.mH @ u_loc
                if X.col_dist == 'MC':
                    g.all_reduce_sum(w, over='col')
                ger(-coeff, u_loc, w, Xt.matrix)
            else:
                Xl = X.view((0, X.height), (0, kj + 1))
                u_loc = u[Xl.global_cols()]
                w = Xl.matrix @ u_loc
                if X.row_dist == 'MR':
                    g.all_reduce_sum(w, over='row')
                ger(-coeff, w, u_loc, Xl.matrix)


def explicit_r(A: Matrix) -> Matrix:
    """``R`` of a factored matrix: its entries with ``j - i >= n - m``, zeros elsewhere."""
    if isinstance(A, DistMatrix):
        R = A.copy()
        band = R.global_cols()[None, :] - R.global_rows()[:, None]
        R.matrix[band < A.width - A.height] = 0
        return R
    m, n = A.shape
    return torch.triu(A, n - m)


def explicit_q(A: Matrix, t: torch.Tensor, d: torch.Tensor) -> Matrix:
    """Form the [n, n] unitary ``Q`` of a factored matrix."""
    if isinstance(A, DistMatrix):
        Q = DistMatrix.identity(A.grid, A.width, A.dtype)
    else:
        Q = torch.eye(A.shape[1], dtype=A.dtype, device=A.device)
    return apply_q('left', 'normal', A, t, d, Q)


# ----------------------------------------------------------------------
# Solving after factorization
# ----------------------------------------------------------------------

def solve_after(orientation: Orientation, A: Matrix, t: torch.Tensor, d: torch.Tensor,
                B: Matrix, check_singular: bool = True) -> Matrix:
    """
    Solve with a factored full-row-rank ``A = R Q`` (``m <= n``).

    - ``'normal'``: minimum-norm solution of ``A X = B``, ``B`` is [m, p],
      ``X`` is [n, p].
    - ``'adjoint'`` / ``'transpose'``: least-squares solution of
      ``A^H X = B`` / ``A^T X = B``, ``B`` is [n, p], ``X`` is [m, p].

    Parameters
    ----------
    orientation : {'normal', 'transpose', 'adjoint'}
    A : torch.Tensor or DistMatrix
        Output of ``factorize``.
    t, d : torch.Tensor
        Outputs of ``factorize``.
    B : torch.Tensor or DistMatrix
        Right-hand sides; a 1-D tensor is treated as a single column.
    check_singular : bool
        Raise ``SingularMatrixError`` when ``R`` has a zero diagonal entry.

    Returns
    -------
    X : torch.Tensor or DistMatrix

    Raises
    ------
    RankDeficiencyError
        If ``m > n``, for every orientation.
    ConformityError
        If the height of ``B`` does not match.
    """
    _check_orientation(orientation)
    if isinstance(A, DistMatrix):
        return _solve_after_dist(orientation, A, t, d, B, check_singular)

    m, n = A.shape
    check_full_row_rank(m, n)
    vector = B.dim() == 1
    if vector:
        B = B[:, None]
    AR = A[:, n - m:]

    if orientation == 'normal':
        check_conformity("B", B.shape[0], m)
        # R sits in the trailing columns, so the reduced solution fills the
        # trailing m rows and the leading n - m rows stay zero.
        X = torch.zeros((n, B.shape[1]), dtype=A.dtype, device=A.device)
        XB = X[n - m:]
        XB.copy_(B)
        trsm('normal', AR, XB, check_singular=check_singular)
        apply_q('left', 'adjoint', A, t, d, X)
    else:
        check_conformity("B", B.shape[0], n)
        X = B.to(dtype=A.dtype, device=A.device, copy=True)
        if orientation == 'transpose':
            conjugate(X)
        apply_q('left', 'normal', A, t, d, X)
        X = X[n - m:].clone()
        trsm('adjoint', AR, X, check_singular=check_singular)
        if orientation == 'transpose':
            conjugate(X)

    return X[:, 0] if vector else X


def _solve_after_dist(orientation, A: DistMatrix, t, d, B: DistMatrix, check_singular):
    check_same_grid(A, B)
    g = A.grid
    m, n = A.height, A.width
    check_full_row_rank(m, n)
    AR = A.locked_view((0, m), (n - m, n))

    if orientation == 'normal':
        check_conformity("B", B.height, m)
        X = DistMatrix.zeros(g, n, B.width, A.dtype)
        XB = X.view((n - m, n), (0, B.width))
        XB.matrix.copy_(B.align_with(XB).locked_matrix)
        trsm('normal', AR, XB, check_singular=check_singular)
        apply_q('left', 'adjoint', A, t, d, X)
    else:
        check_conformity("B", B.height, n)
        X = B.redistribute('MC', 'MR').to(dtype=A.dtype)
        if orientation == 'transpose':
            conjugate(X)
        apply_q('left', 'normal', A, t, d, X)
        X = X.locked_view((n - m, n), (0, X.width)).redistribute('MC', 'MR')
        trsm('adjoint', AR, X, check_singular=check_singular)
        if orientation == 'transpose':
            conjugate(X)
    return X


def try_solve_after(orientation: Orientation, A: Matrix, t: torch.Tensor, d: torch.Tensor,
                    B: Matrix, check_singular: bool = True) -> Result:
    """
    ``solve_after`` returning a ``Result`` instead of raising.

    Precondition and singularity failures come back as ``Result.error`` with
    their ``ErrorKind``. Combine with ``Grid.agree`` when every process of a
    grid must take the same branch.
    """
    try:
        return Result(value=solve_after(orientation, A, t, d, B, check_singular))
    except DLAError as e:
        return Result(error=e)
