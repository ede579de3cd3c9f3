import numbers
from typing import List, Optional, Sequence, Union

from tapegrad.utils import InvalidArgumentError


def parse_axis_param(
    axis: Optional[Union[int, Sequence[int]]], shape: Sequence[int]
) -> List[int]:
    """
    Normalize an axis argument against a shape.

    Negative axes count from the end, Python style.

    Args:
        axis (Optional[Union[int, Sequence[int]]]): A single axis, a list of axes,
            or None for every axis.
        shape (Sequence[int]): The shape the axes refer to.

    Returns:
        List[int]: The non-negative axes.

    Raises:
        InvalidArgumentError: If any axis is outside ``[-rank, rank)``.

    Example:
        >>> parse_axis_param(-1, (2, 3, 4))
        [2]
    """
    rank = len(shape)
    if axis is None:
        return array_range(0, rank)
    axes = [axis] if isinstance(axis, numbers.Integral) else list(axis)
    for ax in axes:
        if not isinstance(ax, numbers.Integral) or not -rank <= ax < rank:
            raise InvalidArgumentError(
                f"All values in axis param must be in range [-{rank}, {rank}) "
                f"but got axis {ax}"
            )
    return [int(ax) if ax >= 0 else rank + int(ax) for ax in axes]


def get_undo_axes_permutation(axes: Sequence[int]) -> List[int]:
    """
    Compute the inverse of an axes permutation.

    Transposing by ``axes`` and then by the returned permutation restores the
    original axis order.

    Example:
        >>> get_undo_axes_permutation([2, 0, 1])
        [1, 2, 0]
    """
    axes = list(axes)
    return [axes.index(i) for i in range(len(axes))]


def array_range(start: int, stop: int) -> List[int]:
    return list(range(start, stop))


def gather_transpose_permutation(outer_dims: int, inner_dims: int) -> List[int]:
    """
    The permutation that moves the gathered axis to position 0.

    For a tensor laid out as ``outer + [indices] + inner`` it returns
    ``[outer_dims] + [0, ..., outer_dims - 1] + [outer_dims + 1, ..., outer_dims + inner_dims]``,
    so every other axis keeps its relative order.
    """
    return (
        [outer_dims]
        + array_range(0, outer_dims)
        + array_range(outer_dims + 1, outer_dims + 1 + inner_dims)
    )
