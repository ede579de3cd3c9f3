import logging
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from tapegrad.array_ops import (
    expand_dims,
    greater_equal,
    logical_and,
    maximum,
    ones,
    reshape,
    scalar,
    transpose,
    where,
    zeros_like,
)
from tapegrad.axis_util import (
    gather_transpose_permutation,
    get_undo_axes_permutation,
    parse_axis_param,
)
from tapegrad.engine import GradFunc, GradThunk, get_engine
from tapegrad.tensor import Tensor
from tapegrad.tensor_util import convert_to_tensor, is_int
from tapegrad.utils import InvalidArgumentError, assert_arg

logger = logging.getLogger(__name__)


def unsorted_segment_sum(x: Any, segment_ids: Any, num_segments: int) -> Tensor:
    r"""
    Computes the sum along segments of a tensor.

    Row ``i`` of ``x`` is added into output row ``segment_ids[i]``:

        $$
        out_k = \sum_{i : segment\_ids_i = k} x_i
        $$

    Rows with a negative segment id are dropped. Segments that receive no rows are zero.

    Args:
        x (Any): The tensor that will be summed along its segments.
        segment_ids (Any): A 1-D int32 tensor with one segment id per row of ``x``.
        num_segments (int): The number of output segments.

    Returns:
        Tensor: A tensor of shape ``[num_segments] + x.shape[1:]``.

    Raises:
        InvalidArgumentError: If ``segment_ids`` is not int32 or ``num_segments``
            is not a whole number.

    Example:
        >>> unsorted_segment_sum([1, 2, 3, 4], [1, 2, 0, 1], 3).tolist()
        [3.0, 5.0, 2.0]
    """
    x = convert_to_tensor(x, "x", "unsorted_segment_sum")
    segment_ids = convert_to_tensor(
        segment_ids, "segment_ids", "unsorted_segment_sum", "int32"
    )
    assert_arg(
        segment_ids.dtype == "int32",
        f"segment_ids must be of dtype int32, got {segment_ids.dtype}",
        "unsorted_segment_sum",
    )
    assert_arg(
        is_int(num_segments),
        f"num_segments must be an integer, got {num_segments!r}",
        "unsorted_segment_sum",
    )
    num_segments = int(num_segments)

    return get_engine().run_kernel(
        lambda backend: backend.unsorted_segment_sum(x, segment_ids, num_segments),
        {"x": x},
        UnsortedSegmentSumGrad(segment_ids),
        kernel_name="unsorted_segment_sum",
    )


def gather(x: Any, indices: Any, axis: int = 0) -> Tensor:
    """
    Gather slices from tensor ``x`` along ``axis`` according to ``indices``.

    The result has the shape of ``x`` with dimension ``axis`` replaced by the shape
    of ``indices``, and ``out[..., i, ...] = x[..., indices[i], ...]``.

    Args:
        x (Any): The input tensor whose slices are gathered.
        indices (Any): int32 indices into dimension ``axis`` of ``x``.
        axis (int, optional): The axis to gather along, negative values count from
            the end. Defaults to 0.

    Returns:
        Tensor: The gathered slices.

    Raises:
        InvalidArgumentError: If ``indices`` is not int32 or ``axis`` is out of range.

    Example:
        >>> gather([[1, 2], [3, 4]], [1, 1, 0]).tolist()
        [[3.0, 4.0], [3.0, 4.0], [1.0, 2.0]]
    """
    x = convert_to_tensor(x, "x", "gather")
    indices = convert_to_tensor(indices, "indices", "gather", "int32")
    assert_arg(
        indices.dtype == "int32",
        f"indices must be of dtype int32, got {indices.dtype}",
        "gather",
    )
    try:
        axis = parse_axis_param(axis, x.shape)[0]
    except InvalidArgumentError as e:
        raise InvalidArgumentError(f"gather: {e}") from e

    return get_engine().run_kernel(
        lambda backend: backend.gather(x, indices, axis),
        {"x": x},
        GatherGrad(indices, axis, x.shape),
        kernel_name="gather",
    )


def gather_drop_negatives(x: Any, indices: Any) -> Tensor:
    """
    Gather rows of ``x`` for non-negative ``indices`` and zero rows for negative ones.

    This is the backward rule of `unsorted_segment_sum`: a row with a negative segment
    id was excluded from every segment, so it receives no gradient.

    Args:
        x (Any): The tensor to gather rows from.
        indices (Any): 1-D int32 indices, possibly negative.

    Returns:
        Tensor: A tensor shaped like ``gather(x, indices)`` whose rows coming from a
        negative index are exactly zero.
    """
    indices = convert_to_tensor(indices, "indices", "gather_drop_negatives", "int32")
    zero_clipped_indices = maximum(indices, zeros_like(indices))
    gathered = gather(x, zero_clipped_indices)

    is_positive = greater_equal(indices, scalar(0, "int32"))
    for i in range(gathered.rank - is_positive.rank):
        is_positive = expand_dims(is_positive, i + 1)
    is_positive = logical_and(is_positive, ones(gathered.shape, "bool"))

    return where(is_positive, gathered, zeros_like(gathered))


########### Gradients ###############
@dataclass
class GatherDropNegativesThunk(GradThunk):
    dy: Tensor
    segment_ids: Tensor

    def compute(self) -> Tensor:
        return gather_drop_negatives(self.dy, self.segment_ids)


@dataclass
class UnsortedSegmentSumGrad(GradFunc):
    """
    Each output row is a sum of input rows, so a contributing row receives the
    gradient of the segment it was added to and an excluded row receives zero.
    """

    segment_ids: Tensor

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {"x": GatherDropNegativesThunk(dy, self.segment_ids)}


@dataclass
class GatherThunk(GradThunk):
    """
    Sum the gradient of every gathered slice back into the slice it was copied from.

    Along axis 0 this is exactly ``unsorted_segment_sum(dy, indices, x.shape[0])``.
    Any other axis is first moved to position 0, reduced the same way, and then
    moved back with the inverse permutation.
    """

    dy: Tensor
    indices: Tensor
    axis: int
    x_shape: Tuple[int, ...]

    def compute(self) -> Tensor:
        axis, x_shape = self.axis, self.x_shape
        if axis == 0 and self.indices.rank == 1:
            return unsorted_segment_sum(self.dy, self.indices, x_shape[0])

        outer_shape = x_shape[:axis]
        inner_shape = x_shape[axis + 1 :]
        indices_size = self.indices.size

        values = reshape(self.dy, outer_shape + (indices_size,) + inner_shape)
        flat_indices = reshape(self.indices, (indices_size,))
        if axis == 0:
            return unsorted_segment_sum(values, flat_indices, x_shape[0])

        transpose_dims = gather_transpose_permutation(len(outer_shape), len(inner_shape))
        values_transpose = transpose(values, transpose_dims)
        params_grad = unsorted_segment_sum(values_transpose, flat_indices, x_shape[axis])
        return transpose(params_grad, get_undo_axes_permutation(transpose_dims))


@dataclass
class GatherGrad(GradFunc):
    indices: Tensor
    axis: int
    x_shape: Tuple[int, ...]

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        # indices are not differentiable
        return {"x": GatherThunk(dy, self.indices, self.axis, self.x_shape)}
