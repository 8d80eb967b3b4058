import torch
from typing import Optional, Tuple


def gaussian(shape: Tuple[int, int],
             dtype=torch.float64,
             device=torch.device('cpu'),
             generator: Optional[torch.Generator] = None
             ) -> torch.Tensor:
    """
    random dense matrix with standard normal entries

    Parameters
    ----------
    shape : tuple
        (m,n) shape of the matrix
    dtype : torch.dtype, optional
        Data type of the matrix, by default torch.float64. Complex types draw
        the real and imaginary parts independently.
    device : torch.device, optional
        Device of the matrix, by default torch.device('cpu')
    generator : torch.Generator, optional
        Source of randomness, so that every process can draw the same matrix

    Returns
    -------
    torch.Tensor
        [m, n]
    """
    if dtype.is_complex:
        real = torch.empty((), dtype=dtype).real.dtype
        re = torch.randn(shape, dtype=real, generator=generator)
        im = torch.randn(shape, dtype=real, generator=generator)
        return torch.complex(re, im).to(device)
    return torch.randn(shape, dtype=dtype, generator=generator).to(device)


def full_row_rank(m: int,
                  n: int,
                  cond: float = 10.0,
                  dtype=torch.float64,
                  device=torch.device('cpu'),
                  generator: Optional[torch.Generator] = None
                  ) -> torch.Tensor:
    """
    random m x n matrix (m <= n) of full row rank with condition number ``cond``

    Parameters
    ----------
    m : int
        number of rows
    n : int
        number of columns, n >= m
    cond : float, optional
        ratio of the largest to the smallest singular value, by default 10

    Returns
    -------
    torch.Tensor
        [m, n]
    """
    assert m <= n, f"full row rank needs m <= n, got {m} and {n}"
    U, _ = torch.linalg.qr(gaussian((m, m), dtype, generator=generator))
    V, _ = torch.linalg.qr(gaussian((n, m), dtype, generator=generator))
    real = torch.empty((), dtype=dtype).real.dtype if dtype.is_complex else dtype
    s = torch.logspace(0, -torch.log10(torch.tensor(cond)).item(), m, dtype=real)
    return ((U * s.to(dtype)[None, :]) @ V.mH).to(device)
