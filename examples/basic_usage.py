#!/usr/bin/env python
"""
Basic usage of torch-dla on a single process.

Demonstrates:
1. RQ factorization and the explicit factors
2. Applying Q without forming it
3. Minimum-norm and least-squares solves
4. Error handling with exceptions and with Result
5. Norms
"""

import torch
import torch_dla as dla
from torch_dla import rq


def print_header(title):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def example_factorize():
    print_header("1. RQ factorization")
    A = dla.gaussian((3, 5), torch.float64, generator=torch.Generator().manual_seed(0))
    F = A.clone()
    t, d = rq.factorize(F)
    R = rq.explicit_r(F)
    Q = rq.explicit_q(F, t, d)
    print("R =\n", R)
    print("diag(R) at offset n - m:", torch.diagonal(R, 2))
    print(f"||A - R Q|| = {torch.linalg.norm(A - R @ Q):.3e}")
    print(f"||Q Q^H - I|| = {torch.linalg.norm(Q @ Q.mH - torch.eye(5, dtype=A.dtype)):.3e}")
    return A, F, t, d


def example_apply_q(F, t, d):
    print_header("2. Applying Q implicitly")
    X = torch.randn(5, 2, dtype=torch.float64)
    Q = rq.explicit_q(F, t, d)
    for orientation, op in [('normal', Q), ('adjoint', Q.mH), ('transpose', Q.mT)]:
        Y = rq.apply_q('left', orientation, F, t, d, X.clone())
        print(f"  op(Q) X, op={orientation:<9}: error {torch.linalg.norm(Y - op @ X):.3e}")


def example_solve(A, F, t, d):
    print_header("3. Solves")
    b = torch.randn(3, dtype=torch.float64)
    x = rq.solve_after('normal', F, t, d, b)
    print(f"  minimum norm: ||A x - b|| = {torch.linalg.norm(A @ x - b):.3e}, "
          f"||x - pinv(A) b|| = {torch.linalg.norm(x - torch.linalg.pinv(A) @ b):.3e}")

    c = torch.randn(5, dtype=torch.float64)
    y = rq.solve_after('adjoint', F, t, d, c)
    y_ref = torch.linalg.lstsq(A.mH, c[:, None]).solution[:, 0]
    print(f"  least squares: ||y - lstsq(A^H, c)|| = {torch.linalg.norm(y - y_ref):.3e}")


def example_errors():
    print_header("4. Error handling")
    F = torch.randn(4, 3, dtype=torch.float64)
    t, d = rq.factorize(F)
    try:
        rq.solve_after('normal', F, t, d, torch.ones(4, 1, dtype=torch.float64))
    except dla.RankDeficiencyError as e:
        print(f"  raised {type(e).__name__} ({e.kind}): {e}")

    res = rq.try_solve_after('normal', F, t, d, torch.ones(4, 1, dtype=torch.float64))
    print(f"  Result.ok = {res.ok}, Result.kind = {res.kind}")


def example_norms(A):
    print_header("5. Norms")
    print(f"  two_norm(A) = {dla.two_norm(A):.4f}")
    S = torch.randn(4, 4, dtype=torch.float64)
    for p in [1, 2, 4]:
        print(f"  Schatten-{p} norm of the lower Hermitian part: "
              f"{dla.hermitian_schatten_norm('lower', S, p):.4f}")


if __name__ == "__main__":
    A, F, t, d = example_factorize()
    example_apply_q(F, t, d)
    example_solve(A, F, t, d)
    example_errors()
    example_norms(A)
