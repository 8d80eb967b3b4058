"""
Distributed dense matrix over a 2-D process grid.

Entries are dealt out element-cyclically. Along each dimension a matrix is
either distributed (``'MC'`` for rows over the grid column communicator,
``'MR'`` for columns over the grid row communicator) or replicated
(``'STAR'``). Global row ``i`` of an ``[MC, *]`` matrix lives on grid row
``(i + col_align) % grid.height`` at local row ``i // grid.height`` (after the
shift), so any contiguous global range maps to a contiguous local slice and a
sub-matrix view is just a torch view of the local buffer.

Example
-------
>>> from torch_dla import Grid, DistMatrix
>>> g = Grid()
>>> A = DistMatrix.from_global(g, A_global)       # [MC, MR]
>>> A0L = A.view((0, 3), (0, 5))                  # aliases A's buffer
>>> a1L = A.locked_view((3, 4), (0, 5))           # read-only window
>>> a1L_STAR_MR = a1L.redistribute('STAR', 'MR')  # replicate over grid rows
>>> A.to_global()                                 # same tensor on every rank
"""

import weakref
import torch
from typing import Optional, Tuple, Union, Literal

from .grid import Grid
from .check import (
    ConformityError,
    LockedViewError,
    ViewAliasingError,
    check_same_grid,
)

ColDist = Literal['MC', 'STAR']
RowDist = Literal['MR', 'STAR']
IndexRange = Union[slice, range, Tuple[int, int]]


def local_length(n: int, shift: int, stride: int) -> int:
    """Number of the indices ``shift, shift + stride, ...`` below ``n``."""
    if n <= shift:
        return 0
    return (n - shift + stride - 1) // stride


def _shift(coord: int, align: int, stride: int) -> int:
    return (coord - align) % stride


def _as_range(index: IndexRange, n: int) -> Tuple[int, int]:
    if isinstance(index, (slice, range)):
        start, stop, step = index.start, index.stop, index.step
        if step not in (None, 1):
            raise ValueError("views must be contiguous")
        start = 0 if start is None else start
        stop = n if stop is None else stop
    else:
        start, stop = index
    if not 0 <= start <= stop <= n:
        raise ConformityError("index range", (start, stop), f"within [0, {n}]")
    return start, stop


class DistMatrix:
    """
    Dense matrix dealt out element-cyclically over a ``Grid``.

    Parameters
    ----------
    grid : Grid
        Process grid (and device context) of the matrix.
    height, width : int
        Global shape.
    col_dist : {'MC', 'STAR'}
        Distribution of rows.
    row_dist : {'MR', 'STAR'}
        Distribution of columns.
    col_align, row_align : int
        Grid row (resp. column) owning global row (resp. column) 0.
    dtype : torch.dtype
        Scalar field.
    local : torch.Tensor, optional
        Local buffer of shape ``(local_height, local_width)``. Zeros if not
        given.

    Attributes
    ----------
    locked : bool
        Read-only views refuse mutation through the matrix API.

    Notes
    -----
    A view never owns storage. While a view is alive its parent cannot be
    resized; the view itself can never be resized.
    """

    def __init__(
        self,
        grid: Grid,
        height: int,
        width: int,
        col_dist: ColDist = 'MC',
        row_dist: RowDist = 'MR',
        col_align: int = 0,
        row_align: int = 0,
        dtype: torch.dtype = torch.float64,
        local: Optional[torch.Tensor] = None,
    ):
        if col_dist not in ('MC', 'STAR'):
            raise ValueError(f"col_dist must be 'MC' or 'STAR', got {col_dist!r}")
        if row_dist not in ('MR', 'STAR'):
            raise ValueError(f"row_dist must be 'MR' or 'STAR', got {row_dist!r}")
        self.grid = grid
        self.height = height
        self.width = width
        self.col_dist = col_dist
        self.row_dist = row_dist
        self.col_align = col_align % self.col_stride
        self.row_align = row_align % self.row_stride
        self.locked = False
        self._parent = None
        self._views = weakref.WeakSet()

        shape = (self.local_height, self.local_width)
        if local is None:
            local = torch.zeros(shape, dtype=dtype, device=grid.device)
        elif tuple(local.shape) != shape:
            raise ConformityError("local", tuple(local.shape), shape)
        self._local = local

    # ------------------------------------------------------------------
    # Distribution
    # ------------------------------------------------------------------

    @property
    def col_stride(self) -> int:
        return self.grid.height if self.col_dist == 'MC' else 1

    @property
    def row_stride(self) -> int:
        return self.grid.width if self.row_dist == 'MR' else 1

    @property
    def col_rank(self) -> int:
        return self.grid.row if self.col_dist == 'MC' else 0

    @property
    def row_rank(self) -> int:
        return self.grid.col if self.row_dist == 'MR' else 0

    @property
    def col_shift(self) -> int:
        return _shift(self.col_rank, self.col_align, self.col_stride)

    @property
    def row_shift(self) -> int:
        return _shift(self.row_rank, self.row_align, self.row_stride)

    @property
    def local_height(self) -> int:
        return local_length(self.height, self.col_shift, self.col_stride)

    @property
    def local_width(self) -> int:
        return local_length(self.width, self.row_shift, self.row_stride)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def dtype(self) -> torch.dtype:
        return self._local.dtype

    @property
    def device(self) -> torch.device:
        return self._local.device

    @property
    def distribution(self) -> Tuple[str, str]:
        return (self.col_dist, self.row_dist)

    def global_rows(self) -> torch.Tensor:
        """Global row index of every local row."""
        return self.col_shift + self.col_stride * torch.arange(
            self.local_height, device=self.device)

    def global_cols(self) -> torch.Tensor:
        """Global column index of every local column."""
        return self.row_shift + self.row_stride * torch.arange(
            self.local_width, device=self.device)

    def row_owner(self, i: int) -> int:
        """Grid row holding global row ``i`` (0 when rows are replicated)."""
        return (i + self.col_align) % self.col_stride

    def col_owner(self, j: int) -> int:
        """Grid column holding global column ``j`` (0 when columns are replicated)."""
        return (j + self.row_align) % self.row_stride

    def is_local_row(self, i: int) -> bool:
        return self.row_owner(i) == self.col_rank

    def is_local_col(self, j: int) -> bool:
        return self.col_owner(j) == self.row_rank

    def is_local(self, i: int, j: int) -> bool:
        return self.is_local_row(i) and self.is_local_col(j)

    def is_primary(self, i: int, j: int) -> bool:
        """True on exactly one process for each global entry."""
        return (self.is_local(i, j)
                and (self.col_dist == 'MC' or self.grid.row == 0)
                and (self.row_dist == 'MR' or self.grid.col == 0))

    # ------------------------------------------------------------------
    # Local storage
    # ------------------------------------------------------------------

    @property
    def matrix(self) -> torch.Tensor:
        """Mutable local buffer."""
        if self.locked:
            raise LockedViewError("cannot obtain a mutable buffer of a locked view")
        return self._local

    @property
    def locked_matrix(self) -> torch.Tensor:
        """Local buffer, for reading."""
        return self._local

    def get_local(self, i_loc: int, j_loc: int):
        return self._local[i_loc, j_loc].item()

    def set_local(self, i_loc: int, j_loc: int, value):
        self.matrix[i_loc, j_loc] = value

    def get(self, i: int, j: int):
        """Collective read of global entry ``(i, j)``: every process gets it."""
        buf = torch.zeros(1, dtype=self.dtype, device=self.device)
        if self.is_local(i, j):
            buf[0] = self._local[(i - self.col_shift) // self.col_stride,
                                 (j - self.row_shift) // self.row_stride]
        root = self.grid.rank_of(
            self.row_owner(i) if self.col_dist == 'MC' else 0,
            self.col_owner(j) if self.row_dist == 'MR' else 0)
        self.grid.broadcast(buf, root, over='all')
        return buf[0].item()

    def set(self, i: int, j: int, value):
        """Write global entry ``(i, j)`` on the processes holding it."""
        if self.is_local(i, j):
            self.set_local((i - self.col_shift) // self.col_stride,
                           (j - self.row_shift) // self.row_stride, value)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _make_view(self, rows: IndexRange, cols: IndexRange, locked: bool) -> "DistMatrix":
        i0, i1 = _as_range(rows, self.height)
        j0, j1 = _as_range(cols, self.width)
        if self.locked and not locked:
            raise LockedViewError("cannot take a mutable view of a locked view")
        li0 = local_length(i0, self.col_shift, self.col_stride)
        li1 = local_length(i1, self.col_shift, self.col_stride)
        lj0 = local_length(j0, self.row_shift, self.row_stride)
        lj1 = local_length(j1, self.row_shift, self.row_stride)
        V = DistMatrix(
            self.grid, i1 - i0, j1 - j0,
            col_dist=self.col_dist, row_dist=self.row_dist,
            col_align=self.col_align + i0, row_align=self.row_align + j0,
            local=self._local[li0:li1, lj0:lj1],
        )
        V.locked = locked
        V._parent = self
        node = self
        while node is not None:
            node._views.add(V)
            node = node._parent
        return V

    def view(self, rows: IndexRange, cols: IndexRange) -> "DistMatrix":
        """Mutable window ``A[rows, cols]`` aliasing this matrix."""
        return self._make_view(rows, cols, locked=False)

    def locked_view(self, rows: IndexRange, cols: IndexRange) -> "DistMatrix":
        """Read-only window ``A[rows, cols]`` aliasing this matrix."""
        return self._make_view(rows, cols, locked=True)

    @property
    def is_view(self) -> bool:
        return self._parent is not None

    def resize(self, height: int, width: int):
        """
        Change the global shape, keeping the overlapping leading block.

        Raises
        ------
        ViewAliasingError
            If this matrix is a view or has live views into it.
        """
        if self._parent is not None:
            raise ViewAliasingError("a view cannot be resized")
        if len(self._views) > 0:
            raise ViewAliasingError(
                f"cannot resize a matrix with {len(self._views)} outstanding view(s)")
        old = self._local
        self.height, self.width = height, width
        self._local = torch.zeros(
            (self.local_height, self.local_width), dtype=old.dtype, device=old.device)
        h = min(old.shape[0], self._local.shape[0])
        w = min(old.shape[1], self._local.shape[1])
        self._local[:h, :w] = old[:h, :w]

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, grid: Grid, height: int, width: int, dtype=torch.float64,
              col_dist: ColDist = 'MC', row_dist: RowDist = 'MR',
              col_align: int = 0, row_align: int = 0) -> "DistMatrix":
        return cls(grid, height, width, col_dist, row_dist, col_align, row_align, dtype)

    @classmethod
    def identity(cls, grid: Grid, n: int, dtype=torch.float64) -> "DistMatrix":
        I = cls.zeros(grid, n, n, dtype)
        mask = I.global_rows()[:, None] == I.global_cols()[None, :]
        I._local[mask] = 1
        return I

    @classmethod
    def from_global(cls, grid: Grid, A: torch.Tensor,
                    col_dist: ColDist = 'MC', row_dist: RowDist = 'MR',
                    col_align: int = 0, row_align: int = 0) -> "DistMatrix":
        """
        Distribute a global tensor held identically by every process.

        Parameters
        ----------
        grid : Grid
            Target grid.
        A : torch.Tensor
            [m, n] or [m] (treated as a column) global matrix.
        """
        if A.dim() == 1:
            A = A[:, None]
        D = cls(grid, A.shape[0], A.shape[1], col_dist, row_dist,
                col_align, row_align, A.dtype)
        D._local = A.to(grid.device)[D.col_shift::D.col_stride,
                                     D.row_shift::D.row_stride].clone()
        return D

    def to_global(self) -> torch.Tensor:
        """Gather the whole matrix; every process receives the same tensor."""
        return self.redistribute('STAR', 'STAR').locked_matrix

    def to(self, dtype: Optional[torch.dtype] = None,
           device: Optional[Union[str, torch.device]] = None) -> "DistMatrix":
        """
        Owning copy with another scalar field and/or device.

        Parameters
        ----------
        dtype : torch.dtype, optional
            Target field, unchanged if not given
        device : str or torch.device, optional
            Target device, ``grid.device`` if not given
        """
        local = self._local.to(dtype=dtype or self.dtype,
                                device=device or self.grid.device, copy=True)
        return DistMatrix(self.grid, self.height, self.width, self.col_dist,
                          self.row_dist, self.col_align, self.row_align, local=local)

    def copy(self) -> "DistMatrix":
        """Owning deep copy with the same distribution and alignment."""
        return DistMatrix(self.grid, self.height, self.width, self.col_dist,
                          self.row_dist, self.col_align, self.row_align,
                          local=self._local.clone())

    # ------------------------------------------------------------------
    # Redistribution
    # ------------------------------------------------------------------

    def redistribute(self, col_dist: ColDist = 'MC', row_dist: RowDist = 'MR',
                     col_align: int = 0, row_align: int = 0) -> "DistMatrix":
        """
        Return an owning copy with another distribution.

        A dimension going from distributed to replicated is scattered into a
        zero buffer of full extent and summed over the communicator of that
        dimension (one all-reduce); a dimension going from replicated to
        distributed is sliced locally without communication.
        """
        check_same_grid(self)
        g = self.grid
        buf = self._local

        # rows
        target_stride = g.height if col_dist == 'MC' else 1
        target_rank = g.row if col_dist == 'MC' else 0
        target_shift = _shift(target_rank, col_align, target_stride)
        if self.col_dist == 'MC' and not (col_dist == 'MC' and
                                          col_align % target_stride == self.col_align):
            full = torch.zeros((self.height, buf.shape[1]), dtype=buf.dtype, device=buf.device)
            full[self.col_shift::self.col_stride] = buf
            buf = g.all_reduce_sum(full, over='col')
            if col_dist == 'MC':
                buf = buf[target_shift::target_stride]
        elif self.col_dist == 'STAR' and col_dist == 'MC':
            buf = buf[target_shift::target_stride]

        # columns
        target_stride = g.width if row_dist == 'MR' else 1
        target_rank = g.col if row_dist == 'MR' else 0
        target_shift = _shift(target_rank, row_align, target_stride)
        if self.row_dist == 'MR' and not (row_dist == 'MR' and
                                          row_align % target_stride == self.row_align):
            full = torch.zeros((buf.shape[0], self.width), dtype=buf.dtype, device=buf.device)
            full[:, self.row_shift::self.row_stride] = buf
            buf = g.all_reduce_sum(full, over='row')
            if row_dist == 'MR':
                buf = buf[:, target_shift::target_stride]
        elif self.row_dist == 'STAR' and row_dist == 'MR':
            buf = buf[:, target_shift::target_stride]

        return DistMatrix(g, self.height, self.width, col_dist, row_dist,
                          col_align, row_align, local=buf.clone())

    def align_with(self, other: "DistMatrix") -> "DistMatrix":
        """Owning copy distributed and aligned like ``other``."""
        return self.redistribute(other.col_dist, other.row_dist,
                                 other.col_align, other.row_align)

    # ------------------------------------------------------------------
    # Entrywise helpers
    # ------------------------------------------------------------------

    def conjugate(self) -> "DistMatrix":
        """Conjugate in place."""
        if self.dtype.is_complex:
            local = self.matrix
            local.copy_(local.conj_physical())
        return self

    def real_part_of_diagonal(self, offset: int = 0) -> torch.Tensor:
        """
        Real part of the ``offset`` diagonal (entries ``(i, i + offset)``),
        replicated on every process.
        """
        i0 = max(0, -offset)
        length = max(0, min(self.height - i0, self.width - (i0 + offset)))
        real = self._local.real if self.dtype.is_complex else self._local
        diag = torch.zeros(length, dtype=real.dtype, device=self.device)
        rows = self.global_rows()
        cols = self.global_cols()
        primary = ((self.col_dist == 'MC' or self.grid.row == 0)
                   and (self.row_dist == 'MR' or self.grid.col == 0))
        if primary and length > 0:
            hit = (cols[None, :] - rows[:, None]) == offset
            li, lj = hit.nonzero(as_tuple=True)
            diag[rows[li] - i0] = real[li, lj]
        return self.grid.all_reduce_sum(diag, over='all')

    def __repr__(self) -> str:
        kind = "locked view" if self.locked else ("view" if self.is_view else "matrix")
        return (f"DistMatrix[{self.col_dist},{self.row_dist}]({self.height}x{self.width}, "
                f"{kind}, local={self.local_height}x{self.local_width}, "
                f"align=({self.col_align},{self.row_align}), dtype={self.dtype}, "
                f"grid={self.grid.height}x{self.grid.width})")
