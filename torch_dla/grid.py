"""
Two-dimensional process grid.

A ``Grid`` arranges the processes of a ``torch.distributed`` group into an
``height x width`` mesh and owns the sub-groups used by the distributed
kernels:

- ``col_group``: processes sharing this process' grid column (they differ in
  grid row). Rows of an ``[MC, *]`` matrix are spread over this group.
- ``row_group``: processes sharing this process' grid row (they differ in
  grid column). Columns of an ``[*, MR]`` matrix are spread over this group.

Ranks are laid out column-major, ``rank = row + col * height``.

The grid is also the explicit device context: every matrix created on a grid
lives on ``grid.device``, and nothing in the library keeps global device state.

Example
-------
>>> import torch.distributed as dist
>>> dist.init_process_group('gloo')
>>> g = Grid(2, 2)             # 4 processes
>>> g.row, g.col               # coordinate of this process
>>> g.all_reduce_sum(x, over='row')
"""

import math
import torch
from typing import Optional, Union

from .check import DeviceError, ConformityError

try:
    import torch.distributed as dist
    DIST_AVAILABLE = True
except ImportError:
    DIST_AVAILABLE = False


def _is_distributed() -> bool:
    return DIST_AVAILABLE and dist.is_available() and dist.is_initialized()


def default_grid_height(size: int) -> int:
    """Largest divisor of ``size`` not exceeding its square root."""
    height = max(int(math.isqrt(size)), 1)
    while size % height != 0:
        height -= 1
    return height


class Grid:
    """
    Process grid over a ``torch.distributed`` group.

    Parameters
    ----------
    height : int, optional
        Number of grid rows. Defaults to the most square factorisation of the
        group size.
    width : int, optional
        Number of grid columns. Defaults to ``size // height``.
    group : ProcessGroup, optional
        Group to arrange. Defaults to the default (world) group.
    device : str or torch.device, optional
        Device of every matrix distributed over this grid. Defaults to
        ``cuda`` for the nccl backend and ``cpu`` otherwise.
    verbose : bool
        Print the grid layout from rank 0.

    Notes
    -----
    Construction creates one sub-group per grid row and per grid column, so
    every process of ``group`` must construct the grid with the same shape,
    in the same order relative to its other collectives.
    """

    def __init__(
        self,
        height: Optional[int] = None,
        width: Optional[int] = None,
        group=None,
        device: Optional[Union[str, torch.device]] = None,
        verbose: bool = False
    ):
        self.group = group
        if _is_distributed():
            self.size = dist.get_world_size(group)
            self.rank = dist.get_rank(group)
            if group is None:
                self._ranks = list(range(self.size))
            else:
                self._ranks = list(dist.get_process_group_ranks(group))
            backend = dist.get_backend(group)
        else:
            self.size = 1
            self.rank = 0
            self._ranks = [0]
            backend = None

        if height is None and width is None:
            height = default_grid_height(self.size)
        if height is None:
            height = self.size // width
        if width is None:
            width = self.size // height
        if height * width != self.size:
            raise ConformityError("grid", (height, width), f"h*w == {self.size}")
        self.height = height
        self.width = width
        self.row = self.rank % height
        self.col = self.rank // height

        if device is None:
            device = 'cuda' if backend == 'nccl' else 'cpu'
        device = torch.device(device)
        if device.type == 'cuda' and not torch.cuda.is_available():
            raise DeviceError(f"grid requested device {device} but CUDA is not available")
        self.device = device

        self.col_group = None
        self.row_group = None
        if self.size > 1:
            # Every process must create every sub-group, in the same order.
            for c in range(width):
                ranks = [self._ranks[self.rank_of(r, c)] for r in range(height)]
                g = dist.new_group(ranks=ranks) if height > 1 else None
                if c == self.col:
                    self.col_group = g
            for r in range(height):
                ranks = [self._ranks[self.rank_of(r, c)] for c in range(width)]
                g = dist.new_group(ranks=ranks) if width > 1 else None
                if r == self.row:
                    self.row_group = g

        if verbose and self.rank == 0:
            print(f"[Grid] {self.height}x{self.width} processes | "
                  f"backend: {backend or 'none'} | device: {self.device}")

    # ------------------------------------------------------------------
    # Coordinates
    # ------------------------------------------------------------------

    def rank_of(self, row: int, col: int) -> int:
        """Rank within the grid group of the process at ``(row, col)``."""
        return row + col * self.height

    def global_rank(self, row: int, col: int) -> int:
        """Global (world) rank of the process at ``(row, col)``."""
        return self._ranks[self.rank_of(row, col)]

    @property
    def shape(self):
        return (self.height, self.width)

    def __repr__(self) -> str:
        return (f"Grid(shape={self.height}x{self.width}, rank={self.rank}, "
                f"coord=({self.row}, {self.col}), device={self.device})")

    # ------------------------------------------------------------------
    # Collectives
    # ------------------------------------------------------------------

    def _resolve(self, over: str):
        """Return (group, participants) for ``over`` in {'row', 'col', 'all'}."""
        if over == 'row':
            return self.row_group, self.width
        if over == 'col':
            return self.col_group, self.height
        if over == 'all':
            return self.group, self.size
        raise ValueError(f"over must be 'row', 'col' or 'all', got {over!r}")

    def all_reduce_sum(self, tensor: torch.Tensor, over: str = 'all') -> torch.Tensor:
        """
        In-place all-reduce (sum) of ``tensor`` over a grid communicator.

        Parameters
        ----------
        tensor : torch.Tensor
            Local contribution, overwritten with the sum.
        over : str
            'row' (processes in this grid row), 'col' (processes in this grid
            column) or 'all'.

        Returns
        -------
        torch.Tensor
            ``tensor`` itself.
        """
        return self._all_reduce(tensor, over, 'sum')

    def all_reduce_max(self, tensor: torch.Tensor, over: str = 'all') -> torch.Tensor:
        """In-place all-reduce (max) of a real ``tensor``; see ``all_reduce_sum``."""
        if tensor.is_complex():
            raise TypeError("max reduction needs a real tensor")
        return self._all_reduce(tensor, over, 'max')

    def _all_reduce(self, tensor, over, op):
        group, participants = self._resolve(over)
        if participants == 1 or not _is_distributed():
            return tensor
        # every member of the communicator holds a buffer of the same size
        if tensor.numel() == 0:
            return tensor
        buf = tensor if tensor.is_contiguous() else tensor.contiguous()
        wire = torch.view_as_real(buf) if buf.is_complex() else buf
        reduce_op = dist.ReduceOp.SUM if op == 'sum' else dist.ReduceOp.MAX
        dist.all_reduce(wire, op=reduce_op, group=group)
        if buf is not tensor:
            tensor.copy_(buf)
        return tensor

    def broadcast(self, tensor: torch.Tensor, root: int, over: str = 'all') -> torch.Tensor:
        """
        In-place broadcast of ``tensor`` from ``root`` over a grid communicator.

        ``root`` is a grid row index for ``over='col'``, a grid column index
        for ``over='row'`` and a grid rank for ``over='all'``.
        """
        group, participants = self._resolve(over)
        if participants == 1 or not _is_distributed():
            return tensor
        if over == 'col':
            src = self.global_rank(root, self.col)
        elif over == 'row':
            src = self.global_rank(self.row, root)
        else:
            src = self._ranks[root]
        buf = tensor if tensor.is_contiguous() else tensor.contiguous()
        wire = torch.view_as_real(buf) if buf.is_complex() else buf
        dist.broadcast(wire, src=src, group=group)
        if buf is not tensor:
            tensor.copy_(buf)
        return tensor

    def barrier(self):
        if self.size > 1 and _is_distributed():
            dist.barrier(group=self.group)

    def agree(self, failed: bool) -> bool:
        """
        Collective agreement on failure: True on every process if any process
        passed ``failed=True``.
        """
        flag = torch.tensor([1.0 if failed else 0.0], device=self.device)
        self.all_reduce_sum(flag, over='all')
        return bool(flag.item() > 0)
