import enum
import torch
from dataclasses import dataclass
from typing import Any, Optional


class ErrorKind(enum.Enum):
    """Tag carried by every error raised by torch_dla"""
    RANK_DEFICIENT = "rank_deficient"
    NON_CONFORMING = "non_conforming"
    SINGULAR = "singular"
    LOCKED_VIEW = "locked_view"
    VIEW_ALIASING = "view_aliasing"
    GRID_MISMATCH = "grid_mismatch"
    DEVICE = "device"


class DLAError(Exception):
    kind: ErrorKind = None


class ShapeException(DLAError):
    kind = ErrorKind.NON_CONFORMING

    def __init__(self, name, shape, expected_shape):
        self.name = name
        self.shape = shape
        self.expected_shape = expected_shape
        super().__init__(f"{name} has shape {shape} expected {expected_shape}")


class ConformityError(ShapeException):
    """Operands whose shapes do not conform"""


class RankDeficiencyError(DLAError):
    kind = ErrorKind.RANK_DEFICIENT


class SingularMatrixError(DLAError):
    kind = ErrorKind.SINGULAR

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"triangular matrix is singular: diagonal entry {index} is zero")


class LockedViewError(DLAError):
    kind = ErrorKind.LOCKED_VIEW


class ViewAliasingError(DLAError):
    kind = ErrorKind.VIEW_ALIASING


class GridMismatchError(DLAError):
    kind = ErrorKind.GRID_MISMATCH


class DeviceError(DLAError):
    kind = ErrorKind.DEVICE


@dataclass
class Result:
    """
    Value-or-error returned by the non-raising entry points.

    Distributed callers can test ``ok`` on every process and agree on a
    common outcome (see ``Grid.agree``) instead of unwinding out of a
    sequence of collectives.
    """
    value: Any = None
    error: Optional[DLAError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    def unwrap(self):
        if self.error is not None:
            raise self.error
        return self.value


def check_full_row_rank(m: int, n: int):
    """
    Check that an m x n factored matrix can have full row rank

    Parameters
    ----------
    m: int
        height of the matrix
    n: int
        width of the matrix
    """
    if m > n:
        raise RankDeficiencyError(f"Must have full row rank, got a {m}x{n} matrix")


def check_conformity(name: str, size: int, expected: int):
    """
    Check that the leading dimension of an operand conforms

    Parameters
    ----------
    name: str
        name of the operand, used in the message
    size: int
        actual height of the operand
    expected: int
        height required by the factored matrix
    """
    if size != expected:
        raise ConformityError(name, f"[{size}, ...]", f"[{expected}, ...]")


def check_same_grid(*matrices):
    """Check that every DistMatrix in ``matrices`` lives on the same grid"""
    grids = [A.grid for A in matrices if hasattr(A, "grid")]
    for g in grids[1:]:
        if g is not grids[0]:
            raise GridMismatchError("matrices are distributed over different grids")


def check_nonsingular(diag: torch.Tensor):
    """
    Check the diagonal of a triangular matrix for exact zeros

    Parameters
    ----------
    diag: torch.Tensor
        [k] diagonal of the triangular matrix
    """
    zeros = (diag == 0).nonzero()
    if zeros.numel() > 0:
        raise SingularMatrixError(int(zeros[0, 0]))
