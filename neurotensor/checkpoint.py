import math
import pickle
from typing import List, Sequence

from neurotensor.creation import tensor
from neurotensor.tensor import Tensor


def save_parameters(
    path: str,
    params: Sequence[Tensor],
) -> None:
    """
    Save a flat list of parameter tensors to disk.

    Parameters
    ----------
    path : str
        File path where the parameters will be written.
    params : sequence of Tensor
        Tensors to save, in the order they should be restored.

    Notes
    -----
    - The file is serialized using :mod:`pickle`.
    - Each tensor is stored as a ``{"shape", "data"}`` record with the data
      as a flat list of floats; graph state is not saved.
    """
    records = [
        {"shape": list(p.shape), "data": p.data.reshape(-1).tolist()}
        for p in params
    ]
    with open(path, "wb") as f:
        pickle.dump({"params": records}, f)


def load_parameters(
    path: str,
    requires_grad: bool = True,
) -> List[Tensor]:
    """
    Load a flat list of parameter tensors written by :func:`save_parameters`.

    Parameters
    ----------
    path : str
        Path to the parameter file.
    requires_grad : bool, default=True
        Gradient tracking flag for every restored tensor.

    Returns
    -------
    list of Tensor
        Leaf tensors in the saved order.

    Raises
    ------
    ValueError
        If a record's data length does not match its shape.
    """
    with open(path, "rb") as f:
        checkpoint = pickle.load(f)

    params = []
    for i, record in enumerate(checkpoint["params"]):
        shape = tuple(record["shape"])
        flat = tensor(record["data"])
        if flat.size != math.prod(shape):
            raise ValueError(f"parameter {i}: {flat.size} values for shape {shape}")
        params.append(Tensor(flat.data.reshape(shape), requires_grad=requires_grad))
    return params
