"""
Householder reflectors.

``left_reflector`` finds ``tau`` and ``v`` with

    (I - tau [1; v] [1; v]^H) [chi; x] = [beta; 0]

and ``right_reflector`` finds ``tau`` and ``v`` with

    [x, chi] (I - tau [v, 1]^T conj([v, 1])) = [0, beta]

In both cases ``beta`` is real with the sign opposite to ``Re(chi)``, ``x`` is
overwritten by ``v`` and ``chi`` by ``beta``. A zero ``x`` gives ``tau = 0``
and leaves ``chi`` untouched.
"""

import math
import torch
from typing import Union

from .distributed import DistMatrix


def _scalar(chi: torch.Tensor):
    return chi.reshape(-1)[0].item()


def _scaled_norm(x: torch.Tensor) -> float:
    """Two-norm of ``x``, scaled by its largest magnitude so tiny entries do not underflow."""
    if x.numel() == 0:
        return 0.0
    scale = x.abs().max().item()
    if scale == 0:
        return 0.0
    return scale * torch.linalg.vector_norm(x / scale).item()


def _householder(alpha, norm_x: float):
    """(tau, beta) of the reflector mapping ``[alpha; x]`` to ``[beta; 0]``."""
    if norm_x == 0:
        return alpha * 0, alpha
    norm = math.hypot(abs(alpha), norm_x)
    beta = -norm if alpha.real >= 0 else norm
    tau = (beta - alpha.conjugate()) / beta
    return tau, beta


def left_reflector(chi: torch.Tensor, x: torch.Tensor):
    """
    Reflector zeroing the column segment ``x`` below the pivot ``chi``.

    Parameters
    ----------
    chi : torch.Tensor
        single-entry view of the pivot, overwritten with ``beta``
    x : torch.Tensor
        [k] or [k, 1] view, overwritten with ``v``

    Returns
    -------
    tau
        Python scalar of the field of ``x``
    """
    alpha = _scalar(chi)
    norm_x = _scaled_norm(x)
    tau, beta = _householder(alpha, norm_x)
    if norm_x != 0:
        x.div_(alpha - beta)
        chi.fill_(beta)
    return tau


def right_reflector(chi: Union[torch.Tensor, DistMatrix], x: Union[torch.Tensor, DistMatrix]):
    """
    Reflector zeroing the row segment ``x`` left of the pivot ``chi``.

    This is the left reflector of the conjugated row: ``x`` is conjugated
    and scaled in place, and the conjugate of its ``tau`` is returned.

    Parameters
    ----------
    chi : torch.Tensor or DistMatrix
        1x1 view of the pivot, overwritten with ``beta``
    x : torch.Tensor or DistMatrix
        [1, k] view, overwritten with ``v``

    Returns
    -------
    tau
        Python scalar, known on every process of the grid in the distributed
        case
    """
    if isinstance(x, DistMatrix):
        return _right_reflector_dist(chi, x)
    alpha = _scalar(chi)
    norm_x = _scaled_norm(x)
    tau, beta = _householder(alpha.conjugate(), norm_x)
    if norm_x != 0:
        if x.is_complex():
            x.copy_(x.conj_physical())
        x.div_(alpha.conjugate() - beta)
        chi.fill_(beta)
    return tau.conjugate()


def _right_reflector_dist(chi: DistMatrix, x: DistMatrix):
    """
    Distributed row reflector.

    The grid row holding the reflector row first agrees on the largest
    magnitude of ``x`` (max reduction), then sums the scaled squared norm and
    the pivot over its row communicator, scales its pieces of ``x`` locally,
    and finally broadcasts ``tau`` down every grid column.
    """
    g = x.grid
    dtype = x.dtype
    out = torch.zeros(1, dtype=dtype, device=x.device)
    if x.local_height == 1:
        local_x = x.matrix
        scale = torch.zeros(1, dtype=local_x.real.dtype if local_x.is_complex() else dtype,
                            device=x.device)
        if local_x.numel() > 0:
            scale[0] = local_x.abs().max()
        if x.row_dist == 'MR':
            g.all_reduce_max(scale, over='row')
        scale = scale.item()
        partial = torch.zeros(2, dtype=dtype, device=x.device)
        if scale > 0 and local_x.numel() > 0:
            partial[0] = (local_x / scale).abs().square().sum()
        if chi.local_height == 1 and chi.local_width == 1:
            partial[1] = chi.locked_matrix[0, 0]
        if x.row_dist == 'MR':
            g.all_reduce_sum(partial, over='row')
        norm_x = scale * math.sqrt(partial[0].real.item())
        alpha = partial[1].item()
        tau, beta = _householder(alpha.conjugate(), norm_x)
        if norm_x != 0:
            if local_x.is_complex():
                local_x.copy_(local_x.conj_physical())
            local_x.div_(alpha.conjugate() - beta)
            if chi.local_width == 1:
                chi.set_local(0, 0, beta)
        out[0] = tau.conjugate()
    if x.col_dist == 'MC':
        g.broadcast(out, x.row_owner(0), over='col')
    return out[0].item()
