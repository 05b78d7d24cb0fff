import numpy as np
import pytest

from neurotensor import creation
from neurotensor.creation import tensor, zeros, ones, full, scalar, randn, rand, uniform, xavier_normal, he_normal
from tests.utils import assert_close


def test_tensor_infers_shape_from_nested_lists():
    t = tensor([[1, 2], [3, 4]])
    assert t.shape == (2, 2)
    assert t.dtype == np.float32
    assert t.to_array() == [[1.0, 2.0], [3.0, 4.0]]

    v = tensor([1, 2, 3])
    assert v.shape == (3,)
    assert v.to_array() == [1.0, 2.0, 3.0]


def test_tensor_copies_input():
    src = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    t = tensor(src)
    src[0] = 100.0
    assert t.to_array() == [1.0, 2.0, 3.0]


def test_factories_shapes_values_requires_grad():
    z = zeros((2, 3))
    o = ones((2, 3), requires_grad=True)
    f = full([2, 3], 7.5)
    s = scalar(5)

    assert z.shape == o.shape == f.shape == (2, 3)
    assert s.shape == (1,)
    assert z.requires_grad is False
    assert o.requires_grad is True

    assert_close(z, np.zeros((2, 3), dtype=np.float32))
    assert_close(o, np.ones((2, 3), dtype=np.float32))
    assert_close(f, np.full((2, 3), 7.5, dtype=np.float32))
    assert s.item() == 5.0


def test_created_tensors_are_leaves():
    for t in (tensor([1.0]), zeros(3), randn((2, 2), requires_grad=True)):
        assert t.grad_fn is None
        assert t.is_leaf


def test_tensor_data_is_read_only():
    t = ones((2, 2))
    with pytest.raises(ValueError):
        t.data[0, 0] = 3.0


def test_random_factories_respect_seed_and_bounds():
    creation.manual_seed(123)
    a = randn((4, 5))
    creation.manual_seed(123)
    b = randn((4, 5))
    assert_close(a, b)

    r = rand((1000,))
    assert r.dtype == np.float32
    assert float(r.data.min()) >= 0.0 and float(r.data.max()) < 1.0

    u = uniform((1000,), -2.0, 3.0)
    assert float(u.data.min()) >= -2.0 and float(u.data.max()) <= 3.0

    with pytest.raises(ValueError):
        uniform((2,), 1.0, 0.0)


def test_variance_scaled_initializers():
    creation.manual_seed(0)
    w = xavier_normal((200, 300))
    assert w.shape == (200, 300)
    assert abs(float(w.data.std()) - np.sqrt(2.0 / 500)) < 0.005

    h = he_normal((400, 100))
    assert abs(float(h.data.std()) - np.sqrt(2.0 / 400)) < 0.005


@pytest.mark.parametrize("init", [xavier_normal, he_normal])
def test_initializers_reject_non_matrix_shapes(init):
    with pytest.raises(ValueError):
        init((3,))
    with pytest.raises(ValueError):
        init((2, 3, 4))


def test_negative_dimension_rejected():
    with pytest.raises(ValueError):
        zeros((2, -1))
