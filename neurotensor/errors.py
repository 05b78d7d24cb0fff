"""
Exceptions raised by neurotensor.

Shape and rank problems are programmer errors: they are raised
immediately by the operation that detects them and never retried.
Missing optional backends are not errors for the loader functions
(they return ``False``); only asking for a backend handle that was
never loaded raises.
"""


class ShapeError(ValueError):
    """
    Raised when an operation receives operands of an unsupported rank or shape.

    Attributes
    ----------
    op : str
        Name of the operation that rejected its operands (e.g. "matmul").
    shapes : tuple of tuple of int
        Shapes of the offending operands, in argument order.
    """

    def __init__(self, op: str, message: str, *shapes) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op
        self.shapes = tuple(tuple(s) for s in shapes)


class BroadcastError(ShapeError):
    """Raised when two operand shapes fall outside the supported broadcast cases."""

    def __init__(self, op: str, shape_a, shape_b) -> None:
        super().__init__(
            op,
            f"cannot broadcast shapes {tuple(shape_a)} and {tuple(shape_b)}",
            shape_a,
            shape_b,
        )


class GradientError(RuntimeError):
    """
    Raised by the autograd engine.

    Either ``backward`` was called on a tensor that does not track
    gradients, or a local-gradient function returned a gradient whose
    count or shape does not match the operation's inputs.
    """


class BackendUnavailableError(RuntimeError):
    """
    Raised when a backend handle is requested before the backend was loaded.

    Attributes
    ----------
    backend : str
        Name of the missing backend (e.g. "gpu").
    """

    def __init__(self, backend: str, hint: str = "") -> None:
        message = f"{backend} backend is not loaded."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)
        self.backend = backend
