"""
Backend registration and selection.

The operation library asks :func:`select_matmul_backend` before every
matrix multiply. Below ``SETTINGS.matmul_threshold`` output elements the
in-process tiled kernel is used; at or above it, the accelerated
synchronous backend if it is loaded. The device backend is never picked
here: callers opt into it with :func:`get_gpu` and ``await`` its methods.

Loading is explicit, idempotent and never raises:

>>> load_acceleration()
True
>>> load_gpu_acceleration()   # no CUDA device on this machine
False
"""

import importlib
import logging
from typing import Optional

from neurotensor.backends import AcceleratedBackend, Backend, CPUBackend, DeviceBackend
from neurotensor.config import SETTINGS
from neurotensor.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

_cpu = CPUBackend()
_accelerated: Optional[AcceleratedBackend] = None
_gpu: Optional[DeviceBackend] = None
_auto_attempted = False


def load_acceleration() -> bool:
    """
    Load the accelerated synchronous backend (PyTorch CPU kernels).

    Returns
    -------
    bool
        True if the backend is available after the call. Failure to import
        ``torch`` is reported as False; the library keeps working on the
        in-process kernels.
    """
    global _accelerated
    if _accelerated is not None:
        return True
    try:
        torch = importlib.import_module("torch")
    except Exception as exc:
        logger.info("Accelerated backend unavailable (%s); using in-process kernels.", exc)
        return False
    _accelerated = AcceleratedBackend(torch)
    logger.debug("Accelerated backend loaded: torch %s", getattr(torch, "__version__", "?"))
    return True


def load_gpu_acceleration() -> bool:
    """
    Load the asynchronous device backend (CuPy on CUDA).

    Returns
    -------
    bool
        True if CuPy imports and at least one CUDA device is visible.
        Any failure (missing package, driver or device) returns False.
    """
    global _gpu
    if _gpu is not None:
        return True
    try:
        cupy = importlib.import_module("cupy")
        if cupy.cuda.runtime.getDeviceCount() < 1:
            logger.info("Device backend unavailable: no CUDA device visible.")
            return False
        backend = DeviceBackend(cupy)
    except Exception as exc:
        logger.info("Device backend unavailable (%s).", exc)
        return False
    _gpu = backend
    logger.debug("Device backend loaded on CUDA device %d", backend.device_id)
    return True


def is_acceleration_available() -> bool:
    """Return whether the accelerated synchronous backend is loaded."""
    return _accelerated is not None


def is_gpu_available() -> bool:
    """Return whether the device backend is loaded."""
    return _gpu is not None


def get_gpu() -> DeviceBackend:
    """
    Return the device backend handle.

    Raises
    ------
    BackendUnavailableError
        If :func:`load_gpu_acceleration` has not succeeded.
    """
    if _gpu is None:
        raise BackendUnavailableError("gpu", "Call load_gpu_acceleration() first.")
    return _gpu


def cpu_backend() -> CPUBackend:
    """Return the in-process backend."""
    return _cpu


def accelerated_backend() -> Optional[AcceleratedBackend]:
    """Return the accelerated synchronous backend, or None if it is not loaded."""
    return _accelerated


def select_matmul_backend(output_elements: int) -> Backend:
    """
    Pick the kernel provider for a matmul producing ``output_elements`` values.

    At or above ``SETTINGS.matmul_threshold`` the accelerated backend is
    chosen when loaded. With ``SETTINGS.auto_accelerate`` on, the first
    such call tries :func:`load_acceleration` once.
    """
    global _auto_attempted
    if output_elements < SETTINGS.matmul_threshold:
        return _cpu
    if _accelerated is None and SETTINGS.auto_accelerate and not _auto_attempted:
        _auto_attempted = True
        load_acceleration()
    return _accelerated if _accelerated is not None else _cpu


def reset() -> None:
    """Forget every loaded backend and the automatic load attempt."""
    global _accelerated, _gpu, _auto_attempted
    _accelerated = None
    _gpu = None
    _auto_attempted = False
