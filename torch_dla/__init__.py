"""
torch-dla: PyTorch Distributed dense Linear Algebra

Dense RQ factorization and minimum-norm solves over a 2-D grid of processes,
built on ``torch`` and ``torch.distributed``.

Features
--------
- Element-cyclic ``DistMatrix`` with zero-copy views and locked views
- Householder RQ factorization, the diagonal of R with non-negative real part
- Implicit application of Q from either side, in any orientation
- Minimum-norm (``A X = B``) and least-squares (``A^H X = B``) solves
- Exceptions tagged with an ``ErrorKind``, plus ``Result``-returning variants

Usage
-----
>>> import torch
>>> from torch_dla import rq
>>> A = torch.randn(3, 5, dtype=torch.float64)
>>> b = torch.randn(3, dtype=torch.float64)
>>> F = A.clone()
>>> t, d = rq.factorize(F)
>>> x = rq.solve_after('normal', F, t, d, b)
>>>
>>> # Distributed (run under torchrun, after dist.init_process_group)
>>> from torch_dla import Grid, DistMatrix
>>> g = Grid()
>>> AD = DistMatrix.from_global(g, A)
>>> t, d = rq.factorize(AD)
>>> XD = rq.solve_after('normal', AD, t, d, DistMatrix.from_global(g, b))
>>> XD.to_global()
"""

from .check import (
    ErrorKind,
    DLAError,
    ShapeException,
    ConformityError,
    RankDeficiencyError,
    SingularMatrixError,
    LockedViewError,
    ViewAliasingError,
    GridMismatchError,
    DeviceError,
    Result,
)

from .grid import Grid

from .distributed import DistMatrix

from .blas import (
    gemv,
    ger,
    trsm,
    diagonal_scale_trapezoid,
)

from .reflector import (
    left_reflector,
    right_reflector,
)

from . import rq

from .rq import (
    factorize,
    panel_householder,
    apply_q,
    explicit_r,
    explicit_q,
    solve_after,
    try_solve_after,
)

from .norm import (
    two_norm,
    hermitian_schatten_norm,
)

from .random import (
    gaussian,
    full_row_rank,
)

__all__ = [
    # errors
    'ErrorKind',
    'DLAError',
    'ShapeException',
    'ConformityError',
    'RankDeficiencyError',
    'SingularMatrixError',
    'LockedViewError',
    'ViewAliasingError',
    'GridMismatchError',
    'DeviceError',
    'Result',
    # grid and matrices
    'Grid',
    'DistMatrix',
    # kernels
    'gemv',
    'ger',
    'trsm',
    'diagonal_scale_trapezoid',
    'left_reflector',
    'right_reflector',
    # RQ
    'rq',
    'factorize',
    'panel_householder',
    'apply_q',
    'explicit_r',
    'explicit_q',
    'solve_after',
    'try_solve_after',
    # norms
    'two_norm',
    'hermitian_schatten_norm',
    # random
    'gaussian',
    'full_row_rank',
]

__version__ = '0.0.1'
