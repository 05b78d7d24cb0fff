"""
Functions that create leaf tensors.

Every function copies its values into a buffer acquired from the current
pool and returns a tensor without an operation record. Random
initializers draw from a module-level ``numpy.random.Generator`` that
:func:`manual_seed` resets.
"""

import math
from typing import Any, Sequence, Union

import numpy as np

from neurotensor.pool import acquire_buffer
from neurotensor.tensor import Tensor

Shape = Union[int, Sequence[int]]

_rng = np.random.default_rng()


def manual_seed(seed: int) -> None:
    """Reseed the generator used by :func:`randn`, :func:`rand` and the initializers."""
    global _rng
    _rng = np.random.default_rng(seed)


def _normalize_shape(shape: Shape) -> tuple:
    if isinstance(shape, (int, np.integer)):
        shape = (int(shape),)
    shape = tuple(int(d) for d in shape)
    if any(d < 0 for d in shape):
        raise ValueError(f"shape dimensions must be non-negative, got {shape}")
    return shape


def _from_values(values: np.ndarray, shape: tuple, requires_grad: bool) -> Tensor:
    buffer = acquire_buffer(math.prod(shape))
    out = buffer.reshape(shape)
    out[...] = values
    return Tensor(out, requires_grad=requires_grad)


def tensor(data: Any, requires_grad: bool = False) -> Tensor:
    """
    Create a tensor from array-like data.

    Parameters
    ----------
    data : Any
        Nested lists, a NumPy array, or a Python number. Values are copied
        and converted to ``float32``. Ragged nesting is rejected.
    requires_grad : bool, default False
        Whether gradients should be tracked.

    Returns
    -------
    Tensor
        A leaf tensor whose shape is inferred from ``data``.

    Examples
    --------
    >>> tensor([[1, 2], [3, 4]]).shape
    (2, 2)
    """
    values = np.asarray(data, dtype=np.float32)
    return _from_values(values, values.shape, requires_grad)


def zeros(shape: Shape, requires_grad: bool = False) -> Tensor:
    """Create a tensor filled with zeros."""
    shape = _normalize_shape(shape)
    return Tensor(acquire_buffer(math.prod(shape)).reshape(shape), requires_grad=requires_grad)


def ones(shape: Shape, requires_grad: bool = False) -> Tensor:
    """Create a tensor filled with ones."""
    return full(shape, 1.0, requires_grad=requires_grad)


def full(shape: Shape, value: float, requires_grad: bool = False) -> Tensor:
    """Create a tensor filled with ``value``."""
    shape = _normalize_shape(shape)
    buffer = acquire_buffer(math.prod(shape))
    buffer.fill(value)
    return Tensor(buffer.reshape(shape), requires_grad=requires_grad)


def scalar(value: float, requires_grad: bool = False) -> Tensor:
    """
    Create a single-element tensor of shape ``(1,)``.

    This is the shape the broadcasting rules treat as a scalar operand.
    """
    return full((1,), value, requires_grad=requires_grad)


def randn(shape: Shape, requires_grad: bool = False, scale: float = 1.0) -> Tensor:
    """
    Create a tensor with values sampled from ``N(0, scale^2)``.

    Parameters
    ----------
    shape : int or sequence of int
        Shape of the output tensor.
    requires_grad : bool, default False
        Whether gradients should be tracked.
    scale : float, default 1.0
        Standard deviation of the distribution.
    """
    shape = _normalize_shape(shape)
    values = _rng.standard_normal(shape, dtype=np.float32) * np.float32(scale)
    return _from_values(values, shape, requires_grad)


def rand(shape: Shape, requires_grad: bool = False) -> Tensor:
    """Create a tensor with values sampled uniformly from ``[0, 1)``."""
    shape = _normalize_shape(shape)
    return _from_values(_rng.random(shape, dtype=np.float32), shape, requires_grad)


def uniform(shape: Shape, low: float, high: float, requires_grad: bool = False) -> Tensor:
    """Create a tensor with values sampled uniformly from ``[low, high)``."""
    if high < low:
        raise ValueError(f"uniform() requires low <= high, got low={low}, high={high}")
    shape = _normalize_shape(shape)
    values = _rng.uniform(low, high, size=shape).astype(np.float32)
    return _from_values(values, shape, requires_grad)


def xavier_normal(shape: Shape, requires_grad: bool = False) -> Tensor:
    """
    Create a weight matrix with Xavier/Glorot normal initialization.

    Samples ``N(0, 2 / (fan_in + fan_out))`` where ``shape = (fan_in, fan_out)``.
    Suited to sigmoid and tanh activations.

    Raises
    ------
    ValueError
        If ``shape`` is not 2-D.
    """
    shape = _normalize_shape(shape)
    if len(shape) != 2:
        raise ValueError(f"xavier_normal requires a 2-D shape (fan_in, fan_out), got {shape}")
    fan_in, fan_out = shape
    return randn(shape, requires_grad=requires_grad, scale=math.sqrt(2.0 / (fan_in + fan_out)))


def he_normal(shape: Shape, requires_grad: bool = False) -> Tensor:
    """
    Create a weight matrix with He/Kaiming normal initialization.

    Samples ``N(0, 2 / fan_in)`` where ``fan_in = shape[0]``. Suited to ReLU.

    Raises
    ------
    ValueError
        If ``shape`` is not 2-D.
    """
    shape = _normalize_shape(shape)
    if len(shape) != 2:
        raise ValueError(f"he_normal requires a 2-D shape (fan_in, fan_out), got {shape}")
    return randn(shape, requires_grad=requires_grad, scale=math.sqrt(2.0 / shape[0]))
