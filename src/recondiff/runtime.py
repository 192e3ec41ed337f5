import collections.abc as cabc
import contextlib
import enum
import functools
import numbers as nb

import numpy as np

import recondiff.info.ptype as rcdt
import recondiff.util as rcdu

__all__ = [
    "CWidth",
    "EnforcePrecision",
    "Precision",
    "Width",
    "coerce",
    "enforce_precision",
    "getCoerceState",
    "getPrecision",
]


@enum.unique
class Width(enum.Enum):
    """
    Machine-dependent floating-point types.
    """

    SINGLE = np.dtype(np.single)
    DOUBLE = np.dtype(np.double)

    def eps(self) -> float:
        """
        Machine precision of a floating-point type.

        Returns the difference between 1 and the next smallest representable float larger than 1.
        """
        eps = np.finfo(self.value).eps
        return float(eps)

    @property
    def complex(self) -> "CWidth":
        """
        Returns precision-equivalent complex-valued type.
        """
        return CWidth[self.name]


@enum.unique
class CWidth(enum.Enum):
    """
    Machine-dependent complex-valued floating-point types.
    """

    SINGLE = np.dtype(np.csingle)
    DOUBLE = np.dtype(np.cdouble)

    @property
    def real(self) -> "Width":
        """
        Returns precision-equivalent real-valued type.
        """
        return Width[self.name]


class Precision(contextlib.AbstractContextManager):
    """
    Context Manager to locally redefine floating-point precision.

    Use this object via a with-block.

    Example
    -------
    >>> import recondiff.runtime as rcdrt
    >>> rcdrt.getPrecision()                      # Width.DOUBLE
    ... with rcdrt.Precision(rcdrt.Width.SINGLE):
    ...     rcdrt.getPrecision()                  # Width.SINGLE
    ... rcdrt.getPrecision()                      # Width.DOUBLE
    """

    def __init__(self, width: Width):
        self._width = width
        self._width_prev = getPrecision()

    def __enter__(self) -> "Precision":
        _setPrecision(self._width)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        _setPrecision(self._width_prev)
        return False


class EnforcePrecision(contextlib.AbstractContextManager):
    """
    Context Manager to locally disable effect of :py:func:`enforce_precision`. [Default: enabled.]

    Use this object via a with-block.

    Example
    -------
    >>> import recondiff.runtime as rcdrt
    >>> rcdrt.getCoerceState()                    # True
    ... with rcdrt.EnforcePrecision(False):
    ...     rcdrt.getCoerceState()                # False
    ... rcdrt.getCoerceState()                    # True
    """

    def __init__(self, state: bool):
        self._state = state
        self._state_prev = getCoerceState()

    def __enter__(self) -> "EnforcePrecision":
        _setCoerceState(self._state)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        _setCoerceState(self._state_prev)
        return False


def enforce_precision(
    i: rcdt.VarName = frozenset(),
    o: bool = True,
    allow_None: bool = True,
) -> cabc.Callable:
    """
    Decorator to pre/post-process function parameters to enforce runtime FP-precision.

    Parameters
    ----------
    i: VarName
        Function parameters for which precision must be enforced to runtime's FP-precision.
        Function parameter values must have a NumPy API, or be scalars.
        None-valued parameters are allowed if `allow_None` is True (default).
    o: bool
        If True (default), ensure function's output (if any) has runtime's FP-precision.
        If function's output does not have a NumPy API or is not scalar-valued, set `o` explicitly to False.
    allow_None: bool

    Example
    -------
    >>> import recondiff.runtime as rcdrt
    >>> @rcdrt.enforce_precision(i='y', o=False)  # `i` can process multiple args: `i=('x','y')`.
    ... def f(x, y, z=1):
    ...     print(x.dtype, y.dtype)
    ...     return x + y + z
    >>> x, y = np.arange(5), np.r_[0.5]
    >>> print(x.dtype, y.dtype)
    int64 float64
    >>> with rcdrt.Precision(rcdrt.Width.SINGLE):
    ...     out = f(x,y)                         # int64, float32 (printed inside f-call.)
    int64 float32
    >>> print(out.dtype)                         # float64 (would have been float32 if `o=True`)
    float64
    """

    def decorator(func: cabc.Callable) -> cabc.Callable:
        @functools.wraps(func)
        def wrapper(*ARGS, **KWARGS):
            func_args = rcdu.parse_params(func, *ARGS, **KWARGS)

            for k in [i] if isinstance(i, str) else i:
                if k not in func_args:
                    error_msg = f"Parameter[{k}] not part of {func.__qualname__}() parameter list."
                    raise ValueError(error_msg)
                elif func_args[k] is None:
                    if not allow_None:
                        raise ValueError(f"Parameter[{k}] cannot be None-valued.")
                else:
                    func_args[k] = coerce(func_args[k])

            out = func(**func_args)
            if o and (out is not None):
                out = coerce(out)
            return out

        return wrapper

    return decorator


def getPrecision() -> Width:
    state = globals()
    return state["__width"]


def getCoerceState() -> bool:
    state = globals()
    return state["__coerce"]


def coerce(x):
    """
    Transform input to match runtime FP-precision.

    Parameters
    ----------
    x: Number | NDArray

    Returns
    -------
    y: Number | NDArray
        Input cast to the runtime FP-precision.
        Complex-valued inputs are cast to the precision-equivalent complex type.

    Note
    ----
    This method is a NO-OP if :py:func:`getCoerceState` returns False.
    """
    if not getCoerceState():
        return x

    width = getPrecision()
    try:
        if isinstance(x, rcdt.Real):
            return np.array(x, dtype=width.value)[()]
        elif isinstance(x, nb.Complex):
            return np.array(x, dtype=width.complex.value)[()]
        elif np.issubdtype(x.dtype, np.complexfloating):
            return x.astype(width.complex.value, copy=False)
        elif np.can_cast(x.dtype, width.value, casting="same_kind"):
            return x.astype(width.value, copy=False)
    except Exception as e:
        raise TypeError(f"Cannot coerce {type(x)} to scalar/array of precision {width.value}.") from e
    raise TypeError(f"Cannot coerce {type(x)} to scalar/array of precision {width.value}.")


def _setPrecision(width: Width):
    # For internal use only. It is recommended to modify FP-precision locally using the `Precision` context manager.
    state = globals()
    state["__width"] = width


def _setCoerceState(s: bool):
    # For internal use only. It is recommended to modify coercion effect locally using the `EnforcePrecision` context
    # manager.
    state = globals()
    state["__coerce"] = s


__width = Width.DOUBLE  # default FP-precision.
__coerce = True  # default: coerce() activated.
