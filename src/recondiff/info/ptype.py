"""
Abstract types and helpers useful to Python's static type-checker.
"""

import collections.abc as cabc
import numbers as nb
import typing as typ

import numpy.typing as npt

import recondiff.info.deps as rcdd

if typ.TYPE_CHECKING:
    import recondiff.abc.operator as rcdo

#: Supported dense array types.
NDArray = typ.TypeVar("NDArray", *rcdd.supported_array_types())

#: Supported dense array modules.
ArrayModule = typ.TypeVar(
    "ArrayModule",
    *[typ.Literal[_] for _ in rcdd.supported_array_modules()],
)

#: Supported sparse array types.
if len(sst := rcdd.supported_sparse_types()) == 1:
    SparseArray = typ.TypeVar("SparseArray", bound=tuple(sst)[0])
else:
    SparseArray = typ.TypeVar("SparseArray", *sst)

#: Top-level abstract :py:class:`~recondiff.abc.Operator` interface exposed to users.
OpT = typ.TypeVar(
    # This list should be kept in sync with all user-facing operators in `rcdo`.
    "OpT",
    "rcdo.Operator",
    "rcdo.Map",
    "rcdo.LinOp",
)

#: :py:class:`~recondiff.abc.Operator` hierarchy class type.
OpC = typ.Type[OpT]

Integer = nb.Integral
Real = nb.Real  #: Alias of :py:class:`numbers.Real`.
DType = npt.DTypeLike  #: :py:attr:`~recondiff.info.ptype.NDArray` dtype specifier.
OpShape = tuple[int, int]  #: (codim, dim) operator shape.
NDArrayAxis = typ.Union[Integer, tuple[Integer, ...]]  #: Axis/Axes specifier.
NDArrayShape = typ.Union[Integer, tuple[Integer, ...]]  #: :py:attr:`~recondiff.info.ptype.NDArray` shape specifier.
VarName = typ.Union[str, cabc.Collection[str]]  #: Variable name(s).
