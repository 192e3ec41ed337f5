import collections.abc as cabc

import recondiff.info.error as rcde
import recondiff.info.ptype as rcdt

__all__ = [
    "as_canonical_axes",
    "as_canonical_shape",
]


def as_canonical_shape(x: rcdt.NDArrayShape) -> tuple[int, ...]:
    """
    Transform a lone integer into a valid tuple-based shape specifier.
    """
    if isinstance(x, cabc.Iterable):
        x = tuple(x)
    else:
        x = (x,)
    sh = tuple(map(int, x))
    return sh


def as_canonical_axes(
    axes: rcdt.NDArrayAxis,
    rank: int,
) -> tuple[int, ...]:
    """
    Transform NDarray axes into tuple-form with positive indices.

    Axis order is preserved.

    Raises
    ------
    InvalidDimsError
        If `axes` is empty, contains repeated entries, or entries outside [-rank, rank).
    """
    axes = as_canonical_shape(axes)
    if len(axes) == 0:
        raise rcde.InvalidDimsError("axes: at least one axis must be specified.")
    if not all(-rank <= ax < rank for ax in axes):
        raise rcde.InvalidDimsError(f"axes: expected entries in [{-rank}, {rank}), got {axes}.")
    axes = tuple(ax % rank for ax in axes)
    if len(set(axes)) != len(axes):
        raise rcde.InvalidDimsError(f"axes: expected distinct entries, got {axes}.")
    return axes
