import numpy as np
import torch

from neurotensor.creation import tensor
from neurotensor.tensor import Tensor

ATOL = 1e-6
RTOL = 1e-5

def to_numpy(x):
    if isinstance(x, Tensor):
        return x.numpy()
    if isinstance(x, torch.Tensor):
        return x.detach().cpu().numpy()
    return np.asarray(x)

def make_tensor(x_np: np.ndarray, requires_grad: bool = True) -> Tensor:
    return tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = to_numpy(a)
    b = to_numpy(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"

def assert_grad_close(grads, t: Tensor, tt: torch.Tensor, atol=ATOL, rtol=RTOL):
    assert t in grads, "tensor missing from gradient map"
    assert tt.grad is not None, "Torch grad is None"
    assert_close(grads[t], tt.grad, atol=atol, rtol=rtol)
