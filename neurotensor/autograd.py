"""
Reverse-mode automatic differentiation over recorded operations.

:func:`backward` never mutates a tensor. It returns a gradient map keyed
by tensor identity; callers read the entries they need and drop the map
before the next training step.
"""

from typing import Dict, List

import numpy as np

from neurotensor.creation import ones, zeros
from neurotensor.errors import GradientError
from neurotensor.pool import acquire_buffer
from neurotensor.tensor import Tensor, no_grad

GradientMap = Dict[Tensor, Tensor]


def topological_order(root: Tensor) -> List[Tensor]:
    """
    Return every tensor reachable from ``root`` in depth-first post-order.

    Inputs always precede the tensors computed from them; ``root`` is last.
    Leaves (tensors without an operation record) end the traversal.
    """
    visited = set()
    order: List[Tensor] = []
    stack = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        if node in visited:
            continue
        visited.add(node)
        stack.append((node, True))
        if node.grad_fn is not None:
            for parent in reversed(node.grad_fn.inputs):
                if parent not in visited:
                    stack.append((parent, False))
    return order


def backward(root: Tensor) -> GradientMap:
    """
    Compute gradients of ``root`` with respect to every tracking tensor in its graph.

    The gradient of ``root`` is seeded with ones of its shape. Tensors are
    then visited in reverse topological order; each operation record's
    local-gradient function receives the tensor's accumulated gradient, and
    each returned gradient is stored for its input, or summed into the
    existing entry when the input feeds more than one operation.

    Parameters
    ----------
    root : Tensor
        Terminal tensor, usually a single-element loss.

    Returns
    -------
    dict of Tensor to Tensor
        Accumulated gradient for ``root`` and every gradient-tracking tensor
        reached. Gradients do not track gradients themselves.

    Raises
    ------
    GradientError
        If ``root`` does not require gradients, or a local-gradient function
        returns the wrong number or shapes of gradients.

    Examples
    --------
    >>> x = tensor([2.0], requires_grad=True)
    >>> y = x * x
    >>> grads = backward(y + y)
    >>> grads[x].item()
    8.0
    """
    if not root.requires_grad:
        raise GradientError("backward() called on a tensor that does not require grad")

    grads: GradientMap = {root: ones(root.shape)}
    order = topological_order(root)

    with no_grad():
        for node in reversed(order):
            if node.grad_fn is None:
                continue
            grad = grads.get(node)
            if grad is None:
                continue

            op = node.grad_fn
            input_grads = op.backward(grad)
            if len(input_grads) != len(op.inputs):
                raise GradientError(
                    f"{op.name}: backward returned {len(input_grads)} gradients "
                    f"for {len(op.inputs)} inputs"
                )

            for inp, inp_grad in zip(op.inputs, input_grads):
                if not inp.requires_grad:
                    continue
                if inp_grad.shape != inp.shape:
                    raise GradientError(
                        f"{op.name}: gradient of shape {inp_grad.shape} "
                        f"for input of shape {inp.shape}"
                    )
                existing = grads.get(inp)
                grads[inp] = inp_grad if existing is None else _accumulate(existing, inp_grad)

    return grads


def _accumulate(existing: Tensor, contribution: Tensor) -> Tensor:
    """Elementwise sum of two gradients into a fresh pool buffer."""
    out = acquire_buffer(existing.size).reshape(existing.shape)
    np.add(existing.data, contribution.data, out=out)
    return Tensor(out)


def zero_grad(grads: GradientMap) -> GradientMap:
    """Return a new map with the same keys and all-zero gradients."""
    return {t: zeros(g.shape) for t, g in grads.items()}


def detach(t: Tensor) -> Tensor:
    """Return a leaf tensor sharing ``t``'s values, with gradient tracking off."""
    return Tensor(t.data, requires_grad=False)


def requires_grad(t: Tensor, requires: bool = True) -> Tensor:
    """
    Return a tensor sharing ``t``'s values with gradient tracking set to ``requires``.

    The operation record is kept when tracking stays on, so the result still
    belongs to ``t``'s graph. Turning tracking off yields a leaf.
    """
    grad_fn = t.grad_fn if requires else None
    return Tensor(t.data, requires_grad=requires, grad_fn=grad_fn)
