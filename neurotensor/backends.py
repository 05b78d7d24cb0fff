"""
Kernel providers.

Three backends share one numeric contract (matmul, add, mul, activation)
and differ only in speed and synchronicity:

- :class:`CPUBackend` -- in-process NumPy kernels with a cache-tiled matmul.
- :class:`AcceleratedBackend` -- PyTorch CPU kernels, synchronous.
- :class:`DeviceBackend` -- CuPy on a CUDA device. Every method is a
  coroutine: work is queued on a CUDA stream, awaited, and copied back
  to host memory before returning.

Synchronous kernels write into a caller-provided ``out`` array (usually a
pool buffer) and return it. The device kernels allocate their own host
result.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from neurotensor.config import SETTINGS
from neurotensor.errors import ShapeError

ACTIVATIONS = ("relu", "sigmoid", "tanh")


def _check_activation(kind: str) -> None:
    if kind not in ACTIVATIONS:
        raise ValueError(f"Unknown activation {kind!r}; expected one of {ACTIVATIONS}")


def _check_matmul(a: Any, b: Any) -> None:
    if a.ndim != 2 or b.ndim != 2:
        raise ShapeError("matmul", "requires 2-D operands", a.shape, b.shape)
    if a.shape[1] != b.shape[0]:
        raise ShapeError("matmul", f"inner dimensions differ: {a.shape} x {b.shape}", a.shape, b.shape)


class Backend(ABC):
    """Synchronous kernel provider executing on the calling thread."""

    name: str = "backend"

    @abstractmethod
    def matmul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Write ``a @ b`` (``(m, k) @ (k, n)``) into ``out`` of shape ``(m, n)``."""

    @abstractmethod
    def add(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Write the elementwise sum of two equal-length arrays into ``out``."""

    @abstractmethod
    def mul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Write the elementwise product of two equal-length arrays into ``out``."""

    @abstractmethod
    def activation(self, kind: str, x: np.ndarray, out: np.ndarray) -> np.ndarray:
        """Write ``relu``/``sigmoid``/``tanh`` of ``x`` into ``out``."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class CPUBackend(Backend):
    """
    In-process NumPy kernels.

    Parameters
    ----------
    tile_size : int, optional
        Edge of the square blocks used by :meth:`matmul`. Defaults to
        ``SETTINGS.tile_size`` (32).
    """
    name = "cpu"

    def __init__(self, tile_size: int = None) -> None:
        self.tile_size = SETTINGS.tile_size if tile_size is None else int(tile_size)

    def matmul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        """
        Blocked matrix multiply.

        Iterates ``(i, j, k)`` over ``tile_size`` blocks and accumulates
        each block product into the matching block of ``out``, so every
        block of the operands stays cache-resident while it is reused.
        """
        _check_matmul(a, b)
        m, k = a.shape
        n = b.shape[1]
        t = self.tile_size
        out[...] = 0
        for i0 in range(0, m, t):
            i1 = min(i0 + t, m)
            for j0 in range(0, n, t):
                j1 = min(j0 + t, n)
                block = out[i0:i1, j0:j1]
                for k0 in range(0, k, t):
                    k1 = min(k0 + t, k)
                    block += a[i0:i1, k0:k1] @ b[k0:k1, j0:j1]
        return out

    def add(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        return np.add(a, b, out=out)

    def mul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        return np.multiply(a, b, out=out)

    def activation(self, kind: str, x: np.ndarray, out: np.ndarray) -> np.ndarray:
        _check_activation(kind)
        if kind == "relu":
            return np.maximum(x, 0, out=out)
        if kind == "tanh":
            return np.tanh(x, out=out)
        np.negative(x, out=out)
        with np.errstate(over="ignore"):
            np.exp(out, out=out)
        out += 1
        return np.reciprocal(out, out=out)


class AcceleratedBackend(Backend):
    """
    PyTorch CPU kernels, executed synchronously on the calling thread.

    Operands are viewed as ``torch`` tensors without copying when they
    are writable and contiguous; read-only tensor views are copied once.
    Results are written straight into ``out``.

    Parameters
    ----------
    torch_module : module
        The imported ``torch`` package.
    """
    name = "accelerated"

    def __init__(self, torch_module: Any) -> None:
        self._torch = torch_module

    def _wrap(self, x: np.ndarray) -> Any:
        return self._torch.from_numpy(np.require(x, dtype=np.float32, requirements=["C", "W"]))

    def matmul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        _check_matmul(a, b)
        self._torch.matmul(self._wrap(a), self._wrap(b), out=self._torch.from_numpy(out))
        return out

    def add(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        self._torch.add(self._wrap(a), self._wrap(b), out=self._torch.from_numpy(out))
        return out

    def mul(self, a: np.ndarray, b: np.ndarray, out: np.ndarray) -> np.ndarray:
        self._torch.mul(self._wrap(a), self._wrap(b), out=self._torch.from_numpy(out))
        return out

    def activation(self, kind: str, x: np.ndarray, out: np.ndarray) -> np.ndarray:
        _check_activation(kind)
        target = self._torch.from_numpy(out)
        if kind == "relu":
            self._torch.clamp(self._wrap(x), min=0, out=target)
        else:
            getattr(self._torch, kind)(self._wrap(x), out=target)
        return out


class DeviceBackend:
    """
    CuPy kernels on a CUDA device, reached only through explicit ``await``.

    Each call uploads its operands, queues the kernel on a private
    non-blocking stream, suspends the caller until the stream's completion
    event fires, then copies the result back to a host ``float32`` array.
    Small operations rarely pay back the transfer cost.

    Parameters
    ----------
    cupy_module : module
        The imported ``cupy`` package, with at least one visible device.

    Examples
    --------
    >>> gpu = get_gpu()
    >>> c = await gpu.matmul(a.data, b.data)
    """
    name = "gpu"

    def __init__(self, cupy_module: Any) -> None:
        self._cp = cupy_module
        self._stream = cupy_module.cuda.Stream(non_blocking=True)

    @property
    def device_id(self) -> int:
        return self._cp.cuda.Device().id

    async def _download(self, result: Any) -> np.ndarray:
        event = self._stream.record()
        await asyncio.to_thread(event.synchronize)
        return self._cp.asnumpy(result).astype(np.float32, copy=False)

    def _upload(self, x: Any) -> Any:
        return self._cp.asarray(np.asarray(x, dtype=np.float32))

    async def matmul(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Return ``a @ b`` for 2-D host arrays, computed on the device."""
        a = np.asarray(a, dtype=np.float32)
        b = np.asarray(b, dtype=np.float32)
        _check_matmul(a, b)
        with self._stream:
            result = self._cp.matmul(self._upload(a), self._upload(b))
        return await self._download(result)

    async def add(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Return the elementwise sum of two equal-shape host arrays."""
        if np.shape(a) != np.shape(b):
            raise ShapeError("add", "device add requires equal shapes", np.shape(a), np.shape(b))
        with self._stream:
            result = self._cp.add(self._upload(a), self._upload(b))
        return await self._download(result)

    async def mul(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """Return the elementwise product of two equal-shape host arrays."""
        if np.shape(a) != np.shape(b):
            raise ShapeError("mul", "device mul requires equal shapes", np.shape(a), np.shape(b))
        with self._stream:
            result = self._cp.multiply(self._upload(a), self._upload(b))
        return await self._download(result)

    async def activation(self, kind: str, x: np.ndarray) -> np.ndarray:
        """Return ``relu``/``sigmoid``/``tanh`` of a host array."""
        _check_activation(kind)
        cp = self._cp
        with self._stream:
            dx = self._upload(x)
            if kind == "relu":
                result = cp.maximum(dx, 0)
            elif kind == "tanh":
                result = cp.tanh(dx)
            else:
                result = 1 / (1 + cp.exp(-dx))
        return await self._download(result)

    def __repr__(self) -> str:
        return f"<DeviceBackend 'gpu' device={self.device_id}>"
