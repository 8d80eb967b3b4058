import pytest
import torch
import numpy as np
from itertools import product
import sys
sys.path.append("..")
from torch_dla import left_reflector, right_reflector, gaussian


@pytest.mark.parametrize(['k', 'dtype'], product([1, 4, 17], [torch.float64, torch.complex128]))
def test_left_reflector(k, dtype):
    g = torch.Generator().manual_seed(k)
    w = gaussian((k + 1, 1), dtype, generator=g)[:, 0]
    chi, x = w[:1].clone(), w[1:].clone()
    tau = left_reflector(chi, x)

    u = torch.cat([torch.ones(1, dtype=dtype), x])
    H = torch.eye(k + 1, dtype=dtype) - tau * torch.outer(u, u.conj())
    out = H @ w
    beta = chi[0]
    if dtype.is_complex:
        assert beta.imag == 0
    assert beta.real * w[0].real <= 0
    torch.testing.assert_close(out[1:], torch.zeros(k, dtype=dtype), rtol=0, atol=1e-12)
    torch.testing.assert_close(out[0], beta)
    torch.testing.assert_close(abs(beta), torch.linalg.vector_norm(w))


@pytest.mark.parametrize(['k', 'dtype'], product([1, 4, 17], [torch.float64, torch.complex128]))
def test_right_reflector(k, dtype):
    g = torch.Generator().manual_seed(100 + k)
    w = gaussian((1, k + 1), dtype, generator=g)
    x, chi = w[:, :k].clone(), w[:, k:].clone()
    tau = right_reflector(chi, x)

    u = torch.cat([x[0], torch.ones(1, dtype=dtype)])
    H = torch.eye(k + 1, dtype=dtype) - tau * torch.outer(u, u.conj())
    out = w @ H
    beta = chi[0, 0]
    torch.testing.assert_close(out[0, :k], torch.zeros(k, dtype=dtype), rtol=0, atol=1e-12)
    torch.testing.assert_close(out[0, k], beta)
    torch.testing.assert_close(abs(beta), torch.linalg.vector_norm(w))
    # H is unitary
    torch.testing.assert_close(H @ H.mH, torch.eye(k + 1, dtype=dtype))


def test_reflector_of_real_row():
    # [4, 3]: beta = -5, tau = 8/5, v = 4/8
    x = torch.tensor([[4.0]], dtype=torch.float64)
    chi = torch.tensor([[3.0]], dtype=torch.float64)
    tau = right_reflector(chi, x)
    assert tau == pytest.approx(8 / 5)
    assert chi.item() == pytest.approx(-5.0)
    assert x.item() == pytest.approx(0.5)


@pytest.mark.parametrize('dtype', [torch.float64, torch.complex128])
def test_zero_segment_is_identity(dtype):
    x = torch.zeros((1, 3), dtype=dtype)
    chi = torch.full((1, 1), -2.0, dtype=dtype)
    tau = right_reflector(chi, x)
    assert tau == 0
    assert chi.item() == -2.0
    assert np.all(x.numpy() == 0)

    xl = torch.zeros(3, dtype=dtype)
    chil = torch.full((1,), 7.0, dtype=dtype)
    assert left_reflector(chil, xl) == 0
    assert chil.item() == 7.0


def test_empty_segment():
    x = torch.zeros((1, 0), dtype=torch.float64)
    chi = torch.full((1, 1), 3.0, dtype=torch.float64)
    assert right_reflector(chi, x) == 0
    assert chi.item() == 3.0


@pytest.mark.parametrize(['scale', 'dtype'],
                         product([1e-170, 1e-300, 1e170], [torch.float64, torch.complex128]))
def test_right_reflector_extreme_scale(scale, dtype):
    w = torch.full((1, 4), scale, dtype=dtype)
    x, chi = w[:, :3].clone(), w[:, 3:].clone()
    tau = right_reflector(chi, x)
    assert tau != 0
    assert abs(chi[0, 0]).item() == pytest.approx(2 * scale, rel=1e-12, abs=0)
    u = torch.cat([x[0], torch.ones(1, dtype=dtype)])
    out = w[0] - tau * (w[0] @ u) * u.conj()
    torch.testing.assert_close(out[:3], torch.zeros(3, dtype=dtype), rtol=0, atol=scale * 1e-12)
