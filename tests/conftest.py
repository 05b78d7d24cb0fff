import numpy as np
import pytest
import importlib.util

from neurotensor import dispatch
from neurotensor.pool import BufferPool, use_pool

@pytest.fixture
def rng():
    return np.random.default_rng(0)

@pytest.fixture(autouse=True)
def pool():
    with use_pool(BufferPool(cap=100, enabled=True)) as p:
        yield p

@pytest.fixture
def fresh_dispatch():
    dispatch.reset()
    yield dispatch
    dispatch.reset()

def _has_cupy():
    return importlib.util.find_spec("cupy") is not None

@pytest.fixture
def gpu(fresh_dispatch):
    if not _has_cupy():
        pytest.skip("cupy not installed")
    if not fresh_dispatch.load_gpu_acceleration():
        pytest.skip("no CUDA device")
    return fresh_dispatch.get_gpu()
