import numpy as np
import pytest
import torch

from neurotensor import ops
from neurotensor.autograd import backward
from neurotensor.creation import tensor, scalar
from neurotensor.errors import BroadcastError
from tests.utils import make_tensor, make_torch, assert_close, assert_grad_close


def _torch_op(op, at, bt):
    return {"add": at + bt, "sub": at - bt, "mul": at * bt, "div": at / bt}[op]


@pytest.mark.parametrize("op", ["add", "sub", "mul", "div"])
@pytest.mark.parametrize("a_shape, b_shape", [
    ((2, 3), (2, 3)),
    ((5,), (5,)),
    ((2, 3), (1,)),
    ((1,), (4, 2)),
    ((3,), (1,)),
])
def test_binary_ops_forward_backward(rng, op, a_shape, b_shape):
    a_np = rng.normal(size=a_shape).astype(np.float32)
    b_np = rng.normal(size=b_shape).astype(np.float32)
    if op == "div":
        b_np = np.abs(b_np) + 0.5

    at = make_torch(a_np)
    bt = make_torch(b_np)
    a = make_tensor(a_np)
    b = make_tensor(b_np)

    yt = _torch_op(op, at, bt)
    y = getattr(ops, op)(a, b)
    yt.sum().backward()
    grads = backward(ops.sum(y))

    assert_close(y, yt)
    assert_grad_close(grads, a, at)
    assert_grad_close(grads, b, bt)


@pytest.mark.parametrize("op", ["add", "sub"])
@pytest.mark.parametrize("swap", [False, True])
def test_row_vector_broadcast_forward_backward(rng, op, swap):
    m_np = rng.normal(size=(4, 3)).astype(np.float32)
    v_np = rng.normal(size=(3,)).astype(np.float32)
    if swap:
        a_np, b_np = v_np, m_np
    else:
        a_np, b_np = m_np, v_np

    at, bt = make_torch(a_np), make_torch(b_np)
    a, b = make_tensor(a_np), make_tensor(b_np)

    yt = _torch_op(op, at, bt)
    y = getattr(ops, op)(a, b)
    yt.sum().backward()
    grads = backward(ops.sum(y))

    assert y.shape == (4, 3)
    assert_close(y, yt)
    assert_grad_close(grads, a, at)
    assert_grad_close(grads, b, bt)


def test_scalar_and_row_broadcast_values():
    assert ops.add(tensor([1, 2, 3]), scalar(5)).to_array() == [6.0, 7.0, 8.0]
    assert ops.add(scalar(5), tensor([1, 2, 3])).to_array() == [6.0, 7.0, 8.0]
    m = tensor([[1, 2, 3], [4, 5, 6]])
    assert ops.add(m, tensor([10, 20, 30])).to_array() == [[11, 22, 33], [14, 25, 36]]
    assert ops.add(tensor([10, 20, 30]), m).to_array() == [[11, 22, 33], [14, 25, 36]]


def test_same_size_same_rank_is_elementwise_in_left_shape():
    a = tensor([[1, 2, 3], [4, 5, 6]])
    b = tensor([[1, 1], [1, 1], [1, 1]])
    c = ops.add(a, b)
    assert c.shape == (2, 3)
    assert c.to_array() == [[2, 3, 4], [5, 6, 7]]


def test_mul_rejects_row_vector_broadcast():
    m = tensor([[1, 2, 3], [4, 5, 6]])
    v = tensor([1, 2, 3])
    with pytest.raises(BroadcastError):
        ops.mul(m, v)
    with pytest.raises(BroadcastError):
        ops.div(v, m)


@pytest.mark.parametrize("op", ["add", "sub", "mul"])
def test_incompatible_shapes_raise(op):
    with pytest.raises(BroadcastError):
        getattr(ops, op)(tensor([1, 2, 3]), tensor([1, 2]))
    with pytest.raises(BroadcastError):
        getattr(ops, op)(tensor([[1, 2], [3, 4]]), tensor([1, 2, 3]))


def test_broadcast_error_is_a_value_error():
    with pytest.raises(ValueError):
        ops.add(tensor([1, 2]), tensor([1, 2, 3]))


def test_operator_overloads_and_python_numbers():
    x = tensor([1.0, 2.0, 3.0])
    assert (x + 1).to_array() == [2.0, 3.0, 4.0]
    assert (1 + x).to_array() == [2.0, 3.0, 4.0]
    assert (x - 1).to_array() == [0.0, 1.0, 2.0]
    assert (10 - x).to_array() == [9.0, 8.0, 7.0]
    assert (x * 2).to_array() == [2.0, 4.0, 6.0]
    assert (x / 2).to_array() == [0.5, 1.0, 1.5]
    assert (-x).to_array() == [-1.0, -2.0, -3.0]


@pytest.mark.parametrize("name", ["relu", "sigmoid", "tanh", "sqrt", "square", "neg"])
def test_unary_ops_forward_backward(rng, name):
    x_np = rng.normal(size=(3, 4)).astype(np.float32)
    if name == "sqrt":
        x_np = np.abs(x_np) + 0.1

    xt = make_torch(x_np)
    x = make_tensor(x_np)

    torch_fns = {
        "relu": torch.relu, "sigmoid": torch.sigmoid, "tanh": torch.tanh,
        "sqrt": torch.sqrt, "square": torch.square, "neg": torch.neg,
    }
    yt = torch_fns[name](xt)
    y = getattr(ops, name)(x)
    yt.sum().backward()
    grads = backward(ops.sum(y))

    assert_close(y, yt)
    assert_grad_close(grads, x, xt)


def test_inputs_are_not_mutated(rng):
    a_np = rng.normal(size=(2, 3)).astype(np.float32)
    a = make_tensor(a_np)
    b = make_tensor(a_np)
    backward(ops.sum(ops.mul(ops.add(a, b), a)))
    assert_close(a, a_np)
    assert_close(b, a_np)


@pytest.mark.parametrize("op", ["add", "sub"])
def test_recorded_names_follow_broadcast_case(op):
    m = tensor([[1, 2, 3], [4, 5, 6]], requires_grad=True)
    fn = getattr(ops, op)
    assert fn(m, m).grad_fn.name == op
    assert fn(m, scalar(2)).grad_fn.name == f"{op}_scalar"
    assert fn(scalar(2), m).grad_fn.name == f"{op}_scalar"
    assert fn(m, tensor([1, 2, 3])).grad_fn.name == f"{op}_row"
    assert fn(tensor([1, 2, 3]), m).grad_fn.name == f"{op}_row"
