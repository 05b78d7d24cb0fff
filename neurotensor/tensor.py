import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

_grad_mode = threading.local()
"""threading.local: Per-thread graph recording state.

``_grad_mode.enabled`` is toggled by the :class:``no_grad`` context manager
and defaults to ``True`` on every thread. When it is ``False``, operations
produce tensors without an operation record, even if their inputs track
gradients. A ``no_grad`` block on one thread never affects another.
"""


def is_grad_enabled() -> bool:
    """Return whether operations on the calling thread record graph edges."""
    return getattr(_grad_mode, "enabled", True)


class no_grad:
    """
    Context manager that temporarily disables graph recording on this thread.

    Inside the block, operations return plain results with
    ``requires_grad=False`` and no :class:`Operation` attached. The
    autograd engine runs every local-gradient function inside this
    context so that computing gradients never grows the graph.

    Examples
    --------
    >>> with no_grad():
    ...     y = x @ w     # no graph recorded
    >>> # Outside the context, recording resumes.

    Notes
    -----
    Nesting is safe; the previous state is restored on exit.
    """
    def __enter__(self):
        self.prev = is_grad_enabled()
        _grad_mode.enabled = False

    def __exit__(self, *args):
        _grad_mode.enabled = self.prev


@dataclass(frozen=True, eq=False)
class Operation:
    """
    Graph edge linking a tensor to the inputs and derivative rule that produced it.

    Attributes
    ----------
    name : str
        Operation kind (``"add"``, ``"matmul"``, ...). Diagnostics only.
    inputs : tuple of Tensor
        Operands in argument order.
    backward : callable
        Local-gradient function. Given the gradient of the operation's
        output, returns one gradient tensor per input, in input order.
    """
    name: str
    inputs: Tuple["Tensor", ...]
    backward: Callable[["Tensor"], Sequence["Tensor"]]

    def __repr__(self) -> str:
        return f"<Operation {self.name}>"


class Tensor:
    """
    An immutable float32 array that can take part in a computation graph.

    A tensor wraps a NumPy array and, when produced by an operation on
    gradient-tracking inputs, the :class:`Operation` that produced it.
    Gradients are never stored on the tensor; :func:`neurotensor.autograd.backward`
    returns them in a separate map keyed by tensor identity.

    Notes
    -----
    - DType is normalized to ``float32`` on construction.
    - ``data`` is a read-only view. The writable storage usually belongs
      to the buffer pool (see :mod:`neurotensor.pool`).
    - Tensors hash by identity so they can key gradient maps. There is
      no elementwise ``==``.
    """
    def __init__(
        self,
        data: Any,
        requires_grad: bool = False,
        grad_fn: Optional[Operation] = None,
    ) -> None:
        """
        Wrap array-like data without copying when it is already float32.

        Parameters
        ----------
        data : Any
            Array-like input. Converted with ``numpy.asarray(..., float32)``.
            Callers that need an independent copy should go through
            :func:`neurotensor.creation.tensor`.
        requires_grad : bool, default False
            Whether gradients should be computed for this tensor.
        grad_fn : Operation, optional
            Internal: the operation record that produced this tensor.
            End users should not set this.
        """
        array = np.asarray(data, dtype=np.float32)
        view = array.view()
        view.flags.writeable = False

        self._data = view
        self._requires_grad = bool(requires_grad)
        self._grad_fn = grad_fn

    @property
    def data(self) -> np.ndarray:
        """numpy.ndarray: Read-only view of the values."""
        return self._data

    @property
    def requires_grad(self) -> bool:
        """bool: Whether gradients are tracked for this tensor."""
        return self._requires_grad

    @property
    def grad_fn(self) -> Optional[Operation]:
        """Operation or None: The record that produced this tensor."""
        return self._grad_fn

    @property
    def is_leaf(self) -> bool:
        """bool: True if the tensor was not produced by a recorded operation."""
        return self._grad_fn is None

    @property
    def shape(self) -> Tuple[int, ...]:
        """tuple of int: The tensor's shape."""
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        """numpy.dtype: Always ``float32``."""
        return self._data.dtype

    @property
    def ndim(self) -> int:
        """int: The number of dimensions of the tensor."""
        return self._data.ndim

    @property
    def size(self) -> int:
        """int: Total number of elements in the tensor."""
        return self._data.size

    @property
    def T(self) -> "Tensor":
        """Tensor: Transpose of a 2-D tensor."""
        from neurotensor import ops
        return ops.transpose(self)

    def __add__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.add(self, _ensure_tensor(other))

    def __radd__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.add(_ensure_tensor(other), self)

    def __sub__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.sub(self, _ensure_tensor(other))

    def __rsub__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.sub(_ensure_tensor(other), self)

    def __mul__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.mul(self, _ensure_tensor(other))

    def __rmul__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.mul(_ensure_tensor(other), self)

    def __truediv__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.div(self, _ensure_tensor(other))

    def __rtruediv__(self, other: Union["Tensor", Any]) -> "Tensor":
        from neurotensor import ops
        return ops.div(_ensure_tensor(other), self)

    def __matmul__(self, other: "Tensor") -> "Tensor":
        from neurotensor import ops
        return ops.matmul(self, _ensure_tensor(other))

    def __neg__(self) -> "Tensor":
        from neurotensor import ops
        return ops.neg(self)

    def sum(self) -> "Tensor":
        """Sum of all elements as a single-element tensor; see :func:`neurotensor.ops.sum`."""
        from neurotensor import ops
        return ops.sum(self)

    def mean(self) -> "Tensor":
        """Mean of all elements as a single-element tensor; see :func:`neurotensor.ops.mean`."""
        from neurotensor import ops
        return ops.mean(self)

    def reshape(self, *shape: int) -> "Tensor":
        """
        Return a tensor with the same data and a new shape.

        Accepts either variadic ints (``t.reshape(3, 2)``) or a single
        sequence (``t.reshape((3, 2))``). See :func:`neurotensor.ops.reshape`.
        """
        from neurotensor import ops
        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = tuple(shape[0])
        return ops.reshape(self, shape)

    def relu(self) -> "Tensor":
        from neurotensor import ops
        return ops.relu(self)

    def sigmoid(self) -> "Tensor":
        from neurotensor import ops
        return ops.sigmoid(self)

    def tanh(self) -> "Tensor":
        from neurotensor import ops
        return ops.tanh(self)

    def item(self) -> float:
        """Return the value of a single-element tensor as a Python float."""
        from neurotensor import ops
        return ops.item(self)

    def to_array(self) -> Union[List[float], List[List[float]]]:
        """Return the values of a 1-D or 2-D tensor as nested Python lists."""
        from neurotensor import ops
        return ops.to_array(self)

    def numpy(self) -> np.ndarray:
        """Return a writable copy of the values."""
        return np.array(self._data, dtype=np.float32, copy=True)

    def detach(self) -> "Tensor":
        """Return a leaf tensor sharing this tensor's values, without gradient tracking."""
        from neurotensor import autograd
        return autograd.detach(self)

    def __repr__(self) -> str:
        """
        Returns a readable string representation of the tensor.

        Examples
        --------
        >>> Tensor([[1, 2], [3, 4]], requires_grad=True)
        tensor([[1., 2.],
                [3., 4.]], requires_grad=True)
        """
        data_str = np.array2string(self._data, separator=', ', prefix='tensor(')
        details = []
        if self._requires_grad:
            details.append("requires_grad=True")
        if self._grad_fn is not None:
            details.append(f"grad_fn=<{self._grad_fn.name}>")
        if not details:
            return f"tensor({data_str})"
        return f"tensor({data_str}, {', '.join(details)})"


def _ensure_tensor(x: Union[Tensor, Any]) -> Tensor:
    """
    Ensure that ``x`` is a :class:`Tensor`.

    Python numbers become single-element tensors of shape ``(1,)`` so that
    they hit the scalar broadcast case; other array-likes are copied via
    :func:`neurotensor.creation.tensor`.
    """
    if isinstance(x, Tensor):
        return x
    from neurotensor import creation
    if isinstance(x, (int, float, np.number)):
        return creation.scalar(float(x))
    return creation.tensor(x)
