"""
Tensor operations with gradient rules.

Every function here is pure: it reads its inputs, writes the result into a
buffer acquired from the current pool, and returns a new tensor. When at
least one input tracks gradients (and recording is enabled), the result
carries an :class:`~neurotensor.tensor.Operation` whose ``backward``
returns the exact analytic derivative for each input.

Binary elementwise operations accept four shape combinations, checked in
this order:

1. same rank and element count -- elementwise on the flat data; the
   result takes the left operand's shape;
2. either operand has a single element -- it is broadcast as a scalar;
3. ``add``/``sub`` only: a 1-D operand against a 2-D operand whose column
   count matches -- the vector is repeated across rows, in either
   argument position;
4. anything else raises :class:`~neurotensor.errors.BroadcastError`.

``mul`` and ``div`` stop after case 2.
"""

import math
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from neurotensor.dispatch import cpu_backend, select_matmul_backend
from neurotensor.errors import BroadcastError, ShapeError
from neurotensor.pool import acquire_buffer
from neurotensor.tensor import Operation, Tensor, is_grad_enabled


class _Broadcast(NamedTuple):
    kind: str              # "same", "scalar" or "row"
    side: Optional[str]    # operand that is broadcast: "a", "b" or None


_SAME = _Broadcast("same", None)


def _empty(shape: Tuple[int, ...]) -> np.ndarray:
    return acquire_buffer(math.prod(shape)).reshape(shape)


def _leaf(values: np.ndarray, shape: Tuple[int, ...]) -> Tensor:
    out = _empty(shape)
    out[...] = values
    return Tensor(out)


def _result(out: np.ndarray, name: str, inputs: Sequence[Tensor], backward) -> Tensor:
    requires_grad = is_grad_enabled() and any(t.requires_grad for t in inputs)
    grad_fn = Operation(name, tuple(inputs), backward) if requires_grad else None
    return Tensor(out, requires_grad=requires_grad, grad_fn=grad_fn)


def _broadcast_case(op: str, a: Tensor, b: Tensor, rows: bool) -> _Broadcast:
    if a.ndim == b.ndim and a.size == b.size:
        return _SAME
    if b.size == 1:
        return _Broadcast("scalar", "b")
    if a.size == 1:
        return _Broadcast("scalar", "a")
    if rows:
        if a.ndim == 2 and b.ndim == 1 and a.shape[1] == b.shape[0]:
            return _Broadcast("row", "b")
        if a.ndim == 1 and b.ndim == 2 and b.shape[1] == a.shape[0]:
            return _Broadcast("row", "a")
    raise BroadcastError(op, a.shape, b.shape)


def _output_shape(case: _Broadcast, a: Tensor, b: Tensor) -> Tuple[int, ...]:
    return b.shape if case.side == "a" else a.shape


def _aligned(case: _Broadcast, a: Tensor, b: Tensor, shape: Tuple[int, ...]) -> Tuple[np.ndarray, np.ndarray]:
    """Return views of both operands that NumPy broadcasts to ``shape``."""
    if case.kind == "same":
        return a.data.reshape(shape), b.data.reshape(shape)
    if case.kind == "scalar":
        if case.side == "a":
            return a.data.reshape(()), b.data
        return a.data, b.data.reshape(())
    return a.data, b.data


def _reduce(grad: np.ndarray, case: _Broadcast, side: str, shape: Tuple[int, ...]) -> Tensor:
    """Sum a gradient of the output's shape back down to one operand's shape."""
    if case.side == side:
        if case.kind == "scalar":
            grad = np.sum(grad, dtype=np.float32)
        elif case.kind == "row":
            grad = np.sum(grad, axis=0, dtype=np.float32)
    return _leaf(np.reshape(grad, shape), shape)


def add(a: Tensor, b: Tensor) -> Tensor:
    """
    Elementwise addition with the four-case broadcasting rules.

    Gradients: the incoming gradient flows unchanged to both inputs,
    summed over the broadcast axis for the broadcast operand.

    Examples
    --------
    >>> add(tensor([1, 2, 3]), scalar(5)).to_array()
    [6.0, 7.0, 8.0]
    >>> add(tensor([[1, 2, 3], [4, 5, 6]]), tensor([10, 20, 30])).to_array()
    [[11.0, 22.0, 33.0], [14.0, 25.0, 36.0]]
    """
    case = _broadcast_case("add", a, b, rows=True)
    shape = _output_shape(case, a, b)
    out = _empty(shape)
    if case is _SAME:
        cpu_backend().add(a.data.reshape(-1), b.data.reshape(-1), out.reshape(-1))
    else:
        np.add(*_aligned(case, a, b, shape), out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_reduce(grad.data, case, "a", a.shape), _reduce(grad.data, case, "b", b.shape)]

    return _result(out, "add" if case is _SAME else f"add_{case.kind}", (a, b), _backward)


def sub(a: Tensor, b: Tensor) -> Tensor:
    """
    Elementwise subtraction, same shape rules as :func:`add`.

    Gradients: identity to ``a``, negated to ``b``.
    """
    case = _broadcast_case("sub", a, b, rows=True)
    shape = _output_shape(case, a, b)
    out = _empty(shape)
    np.subtract(*_aligned(case, a, b, shape), out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_reduce(grad.data, case, "a", a.shape), _reduce(-grad.data, case, "b", b.shape)]

    return _result(out, "sub" if case is _SAME else f"sub_{case.kind}", (a, b), _backward)


def mul(a: Tensor, b: Tensor) -> Tensor:
    """
    Elementwise multiplication.

    Only equal-size and scalar operands are accepted; a vector against a
    matrix raises :class:`BroadcastError` (unlike :func:`add`).

    Gradients: ``grad * b`` for ``a`` and ``grad * a`` for ``b``, summed
    for a scalar operand.
    """
    case = _broadcast_case("mul", a, b, rows=False)
    shape = _output_shape(case, a, b)
    out = _empty(shape)
    if case is _SAME:
        cpu_backend().mul(a.data.reshape(-1), b.data.reshape(-1), out.reshape(-1))
    else:
        np.multiply(*_aligned(case, a, b, shape), out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        a_al, b_al = _aligned(case, a, b, shape)
        g = grad.data
        return [_reduce(g * b_al, case, "a", a.shape), _reduce(g * a_al, case, "b", b.shape)]

    return _result(out, "mul", (a, b), _backward)


def div(a: Tensor, b: Tensor) -> Tensor:
    """
    Elementwise division, same shape rules as :func:`mul`.

    Gradients: ``grad / b`` for ``a`` and ``-grad * a / b**2`` for ``b``.
    """
    case = _broadcast_case("div", a, b, rows=False)
    shape = _output_shape(case, a, b)
    out = _empty(shape)
    np.divide(*_aligned(case, a, b, shape), out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        a_al, b_al = _aligned(case, a, b, shape)
        g = grad.data
        return [_reduce(g / b_al, case, "a", a.shape), _reduce(-g * a_al / (b_al * b_al), case, "b", b.shape)]

    return _result(out, "div", (a, b), _backward)


def neg(t: Tensor) -> Tensor:
    """Elementwise negation."""
    out = _empty(t.shape)
    np.negative(t.data, out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(-grad.data, t.shape)]

    return _result(out, "neg", (t,), _backward)


def sqrt(t: Tensor) -> Tensor:
    """Elementwise square root. Gradient: ``grad / (2 * sqrt(t))``."""
    out = _empty(t.shape)
    np.sqrt(t.data, out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(grad.data * 0.5 / out, t.shape)]

    return _result(out, "sqrt", (t,), _backward)


def square(t: Tensor) -> Tensor:
    """Elementwise square. Gradient: ``2 * t * grad``."""
    out = _empty(t.shape)
    np.multiply(t.data, t.data, out=out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(2.0 * t.data * grad.data, t.shape)]

    return _result(out, "square", (t,), _backward)


def matmul(a: Tensor, b: Tensor) -> Tensor:
    """
    Matrix multiply of two 2-D tensors, ``(m, k) @ (k, n) -> (m, n)``.

    The kernel is chosen by :func:`neurotensor.dispatch.select_matmul_backend`
    from the output element count: the in-process tiled kernel below the
    threshold, the accelerated backend (when loaded) at or above it.

    Gradients: ``grad @ b.T`` for ``a`` and ``a.T @ grad`` for ``b``.

    Raises
    ------
    ShapeError
        If either operand is not 2-D or the inner dimensions differ.

    Examples
    --------
    >>> matmul(tensor([[1, 2], [3, 4]]), tensor([[5, 6], [7, 8]])).to_array()
    [[19.0, 22.0], [43.0, 50.0]]
    """
    if a.ndim != 2 or b.ndim != 2:
        raise ShapeError("matmul", f"requires 2-D tensors, got {a.shape} and {b.shape}", a.shape, b.shape)
    if a.shape[1] != b.shape[0]:
        raise ShapeError("matmul", f"cannot multiply {a.shape} x {b.shape}", a.shape, b.shape)

    shape = (a.shape[0], b.shape[1])
    out = _empty(shape)
    select_matmul_backend(math.prod(shape)).matmul(a.data, b.data, out)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [matmul(grad, transpose(b)), matmul(transpose(a), grad)]

    return _result(out, "matmul", (a, b), _backward)


def transpose(t: Tensor) -> Tensor:
    """
    Transpose of a 2-D tensor. The gradient is the transposed incoming gradient.

    Raises
    ------
    ShapeError
        If ``t`` is not 2-D.
    """
    if t.ndim != 2:
        raise ShapeError("transpose", f"requires a 2-D tensor, got shape {t.shape}", t.shape)
    out = _empty((t.shape[1], t.shape[0]))
    out[...] = t.data.T

    def _backward(grad: Tensor) -> List[Tensor]:
        return [transpose(grad)]

    return _result(out, "transpose", (t,), _backward)


def sum(t: Tensor) -> Tensor:
    """
    Sum of all elements, as a tensor of shape ``(1,)``.

    The gradient broadcasts the single incoming value to every element.
    """
    out = _empty((1,))
    out[0] = np.sum(t.data, dtype=np.float32)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(grad.data.reshape(-1)[0], t.shape)]

    return _result(out, "sum", (t,), _backward)


def mean(t: Tensor) -> Tensor:
    """
    Mean of all elements, as a tensor of shape ``(1,)``.

    The gradient is that of :func:`sum` scaled by ``1 / t.size``.

    Raises
    ------
    ShapeError
        If ``t`` has no elements.
    """
    n = t.size
    if n == 0:
        raise ShapeError("mean", "requires at least one element", t.shape)
    out = _empty((1,))
    out[0] = np.sum(t.data, dtype=np.float32) / np.float32(n)

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(grad.data.reshape(-1)[0] / np.float32(n), t.shape)]

    return _result(out, "mean", (t,), _backward)


def reshape(t: Tensor, shape: Sequence[int]) -> Tensor:
    """
    Return a tensor over the same buffer with a new shape.

    Raises
    ------
    ShapeError
        If ``shape`` has a negative dimension or a different element count.
    """
    shape = tuple(int(d) for d in shape)
    if any(d < 0 for d in shape) or math.prod(shape) != t.size:
        raise ShapeError("reshape", f"cannot reshape {t.shape} to {shape}", t.shape, shape)
    src_shape = t.shape

    def _backward(grad: Tensor) -> List[Tensor]:
        return [reshape(grad, src_shape)]

    return _result(t.data.reshape(shape), "reshape", (t,), _backward)


def clone(t: Tensor) -> Tensor:
    """Copy ``t`` into a fresh buffer. The gradient passes through unchanged."""
    out = _empty(t.shape)
    out[...] = t.data

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(grad.data, t.shape)]

    return _result(out, "clone", (t,), _backward)


def _activation(kind: str, t: Tensor, derivative) -> Tensor:
    out = _empty(t.shape)
    cpu_backend().activation(kind, t.data.reshape(-1), out.reshape(-1))

    def _backward(grad: Tensor) -> List[Tensor]:
        return [_leaf(derivative(t.data, out) * grad.data, t.shape)]

    return _result(out, kind, (t,), _backward)


def relu(t: Tensor) -> Tensor:
    """Elementwise ``max(0, t)``. Gradient: ``grad`` where ``t > 0``, else 0."""
    return _activation("relu", t, lambda x, y: (x > 0).astype(np.float32))


def sigmoid(t: Tensor) -> Tensor:
    """Elementwise logistic function. Gradient: ``grad * y * (1 - y)``."""
    return _activation("sigmoid", t, lambda x, y: y * (1 - y))


def tanh(t: Tensor) -> Tensor:
    """Elementwise hyperbolic tangent. Gradient: ``grad * (1 - y**2)``."""
    return _activation("tanh", t, lambda x, y: 1 - y * y)


def item(t: Tensor) -> float:
    """
    Return the value of a single-element tensor.

    Raises
    ------
    ShapeError
        If ``t`` does not hold exactly one element.
    """
    if t.size != 1:
        raise ShapeError("item", f"requires a single-element tensor, got shape {t.shape}", t.shape)
    return float(t.data.reshape(-1)[0])


def to_array(t: Tensor) -> Union[List[float], List[List[float]]]:
    """
    Return the values of a 1-D or 2-D tensor as (nested) Python lists.

    Raises
    ------
    ShapeError
        For any other rank.
    """
    if t.ndim not in (1, 2):
        raise ShapeError("to_array", f"supports 1-D and 2-D tensors, got shape {t.shape}", t.shape)
    return t.data.tolist()
