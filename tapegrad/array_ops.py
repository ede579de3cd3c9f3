import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from tapegrad.axis_util import array_range, get_undo_axes_permutation, parse_axis_param
from tapegrad.engine import GradFunc, GradThunk, get_engine
from tapegrad.tensor import Tensor
from tapegrad.tensor_util import convert_to_tensor
from tapegrad.utils import InvalidArgumentError, assert_arg

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]


########### Constructors ###############
def tensor(values: Any, dtype: Optional[str] = None) -> Tensor:
    """
    Create a tensor from a literal value.

    Args:
        values (Any): A scalar, nested sequence or numpy array.
        dtype (Optional[str], optional): "float32", "int32" or "bool". Inferred if None.

    Returns:
        Tensor: The new tensor.
    """
    return convert_to_tensor(values, "values", "tensor", dtype)


def scalar(value: Union[int, float, bool], dtype: str = "float32") -> Tensor:
    return convert_to_tensor(value, "value", "scalar", dtype)


def ones(shape: Sequence[int], dtype: str = "float32") -> Tensor:
    return get_engine().backend.ones(tuple(shape), dtype)


def zeros(shape: Sequence[int], dtype: str = "float32") -> Tensor:
    return get_engine().backend.zeros(tuple(shape), dtype)


def ones_like(x: Any) -> Tensor:
    x = convert_to_tensor(x, "x", "ones_like")
    return ones(x.shape, x.dtype)


def zeros_like(x: Any) -> Tensor:
    x = convert_to_tensor(x, "x", "zeros_like")
    return zeros(x.shape, x.dtype)


########### Movement ops ###############
def reshape(x: Any, shape: Sequence[int]) -> Tensor:
    """
    Give the values of ``x`` a new shape.

    Args:
        x (Any): The input tensor.
        shape (Sequence[int]): The new shape. One dimension may be -1.

    Returns:
        Tensor: The reshaped tensor.
    """
    x = convert_to_tensor(x, "x", "reshape")
    shape = tuple(int(d) for d in shape)
    return get_engine().run_kernel(
        lambda backend: backend.reshape(x, shape),
        {"x": x},
        ReshapeGrad(x.shape),
        kernel_name="reshape",
    )


def transpose(x: Any, perm: Optional[Sequence[int]] = None) -> Tensor:
    """
    Permute the axes of ``x``.

    Args:
        x (Any): The input tensor.
        perm (Optional[Sequence[int]], optional): The new order of the axes.
            Defaults to reversing them.

    Returns:
        Tensor: The transposed tensor.
    """
    x = convert_to_tensor(x, "x", "transpose")
    if perm is None:
        perm = array_range(0, x.rank)[::-1]
    perm = [int(p) for p in perm]
    if sorted(perm) != array_range(0, x.rank):
        raise InvalidArgumentError(
            f"transpose: perm {perm} is not a permutation of the {x.rank} axes of x"
        )
    return get_engine().run_kernel(
        lambda backend: backend.transpose(x, perm),
        {"x": x},
        TransposeGrad(get_undo_axes_permutation(perm)),
        kernel_name="transpose",
    )


def expand_dims(x: Any, axis: int = 0) -> Tensor:
    """
    Insert a dimension of size one at ``axis``.

    ``axis`` may be in ``[-(rank + 1), rank + 1)``.
    """
    x = convert_to_tensor(x, "x", "expand_dims")
    axis = parse_axis_param(axis, x.shape + (1,))[0]
    return get_engine().run_kernel(
        lambda backend: backend.expand_dims(x, axis),
        {"x": x},
        ReshapeGrad(x.shape),
        kernel_name="expand_dims",
    )


def broadcast_to(x: Any, shape: Sequence[int]) -> Tensor:
    """
    Broadcast ``x`` to ``shape`` following numpy's broadcasting rules.
    """
    x = convert_to_tensor(x, "x", "broadcast_to")
    shape = tuple(int(d) for d in shape)
    return get_engine().run_kernel(
        lambda backend: backend.broadcast_to(x, shape),
        {"x": x},
        UnbroadcastGrad(x.shape),
        kernel_name="broadcast_to",
    )


########### Reductions ###############
def sum(
    x: Any, axis: Optional[Union[int, Sequence[int]]] = None, keepdims: bool = False
) -> Tensor:
    """
    Sum the elements of ``x`` over ``axis``.

    Examples:
        - shape (3, 4, 5), axis (1, 2), keepdims True  -> result shape (3, 1, 1)
        - shape (3, 4, 5), axis (1, 2), keepdims False -> result shape (3,)
        - shape (3, 4, 5), axis None, keepdims False  -> result shape ()

    Args:
        x (Any): The input tensor.
        axis (Optional[Union[int, Sequence[int]]], optional): Axes to sum over.
            All axes if None.
        keepdims (bool, optional): Keep the reduced axes with size one.

    Returns:
        Tensor: The reduced tensor.
    """
    x = convert_to_tensor(x, "x", "sum")
    axes = parse_axis_param(axis, x.shape)
    return get_engine().run_kernel(
        lambda backend: backend.sum(x, axes, keepdims),
        {"x": x},
        SumGrad(x.shape, tuple(axes)),
        kernel_name="sum",
    )


########### Binary ops ###############
def add(a: Any, b: Any) -> Tensor:
    a = convert_to_tensor(a, "a", "add")
    b = convert_to_tensor(b, "b", "add")
    return get_engine().run_kernel(
        lambda backend: backend.add(a, b),
        {"a": a, "b": b},
        AddGrad(a.shape, b.shape),
        kernel_name="add",
    )


def multiply(a: Any, b: Any) -> Tensor:
    a = convert_to_tensor(a, "a", "multiply")
    b = convert_to_tensor(b, "b", "multiply")
    return get_engine().run_kernel(
        lambda backend: backend.multiply(a, b),
        {"a": a, "b": b},
        MultiplyGrad(a, b),
        kernel_name="multiply",
    )


def maximum(a: Any, b: Any) -> Tensor:
    """
    Elementwise maximum of ``a`` and ``b``.

    The gradient flows to ``a`` where ``a >= b`` and to ``b`` elsewhere, so ties
    go to ``a``.
    """
    a = convert_to_tensor(a, "a", "maximum")
    b = convert_to_tensor(b, "b", "maximum")
    return get_engine().run_kernel(
        lambda backend: backend.maximum(a, b),
        {"a": a, "b": b},
        MaximumGrad(a, b),
        kernel_name="maximum",
    )


def greater_equal(a: Any, b: Any) -> Tensor:
    a = convert_to_tensor(a, "a", "greater_equal")
    b = convert_to_tensor(b, "b", "greater_equal")
    return get_engine().run_kernel(
        lambda backend: backend.greater_equal(a, b),
        {"a": a, "b": b},
        kernel_name="greater_equal",
    )


def logical_and(a: Any, b: Any) -> Tensor:
    a = convert_to_tensor(a, "a", "logical_and", "bool")
    b = convert_to_tensor(b, "b", "logical_and", "bool")
    return get_engine().run_kernel(
        lambda backend: backend.logical_and(a, b),
        {"a": a, "b": b},
        kernel_name="logical_and",
    )


def where(condition: Any, a: Any, b: Any) -> Tensor:
    """
    Pick elements from ``a`` where ``condition`` is true and from ``b`` elsewhere.

    Args:
        condition (Any): A bool tensor broadcastable against ``a`` and ``b``.
        a (Any): Values used where the condition holds.
        b (Any): Values used where it does not.

    Returns:
        Tensor: The selected values.
    """
    condition = convert_to_tensor(condition, "condition", "where", "bool")
    a = convert_to_tensor(a, "a", "where")
    b = convert_to_tensor(b, "b", "where")
    assert_arg(
        condition.dtype == "bool",
        f"condition must be of dtype bool, got {condition.dtype}",
        "where",
    )
    return get_engine().run_kernel(
        lambda backend: backend.select(condition, a, b),
        {"a": a, "b": b},
        WhereGrad(condition, a.shape, b.shape),
        kernel_name="where",
    )


def unbroadcast(grad: Tensor, to_shape: Shape) -> Tensor:
    """
    Sum out broadcasted dimensions so that ``grad`` matches ``to_shape``.
    Essentially the inverse of numpy's broadcasting.

    Args:
        grad (Tensor): Gradient with the broadcast shape.
        to_shape (Shape): Shape to unbroadcast to.

    Returns:
        Tensor: Gradient with shape ``to_shape``.
    """
    to_shape = tuple(to_shape)
    if grad.shape == to_shape:
        # No broadcasting happened
        return grad

    # e.g. grad.shape might be (4,3,2) but to_shape is (1,3,2) or (3,2)
    leading = grad.rank - len(to_shape)
    axes = array_range(0, leading) + [
        leading + dim
        for dim, size in enumerate(to_shape)
        if size == 1 and grad.shape[leading + dim] != 1
    ]
    return reshape(sum(grad, axis=axes, keepdims=True), to_shape)


########### Gradients ###############
@dataclass
class ReshapeThunk(GradThunk):
    dy: Tensor
    shape: Shape

    def compute(self) -> Tensor:
        return reshape(self.dy, self.shape)


@dataclass
class ReshapeGrad(GradFunc):
    x_shape: Shape

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {"x": ReshapeThunk(dy, self.x_shape)}


@dataclass
class TransposeThunk(GradThunk):
    dy: Tensor
    undo_perm: Sequence[int]

    def compute(self) -> Tensor:
        return transpose(self.dy, self.undo_perm)


@dataclass
class TransposeGrad(GradFunc):
    undo_perm: Sequence[int]

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {"x": TransposeThunk(dy, self.undo_perm)}


@dataclass
class SumThunk(GradThunk):
    """
    Every input element contributes once to its reduced output element, so the
    gradient is dy broadcast back over the reduced axes.
    """

    dy: Tensor
    x_shape: Shape
    axes: Tuple[int, ...]

    def compute(self) -> Tensor:
        kept_shape = tuple(
            1 if dim in self.axes else size for dim, size in enumerate(self.x_shape)
        )
        return broadcast_to(reshape(self.dy, kept_shape), self.x_shape)


@dataclass
class SumGrad(GradFunc):
    x_shape: Shape
    axes: Tuple[int, ...]

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {"x": SumThunk(dy, self.x_shape, self.axes)}


@dataclass
class UnbroadcastThunk(GradThunk):
    dy: Tensor
    shape: Shape

    def compute(self) -> Tensor:
        return unbroadcast(self.dy, self.shape)


@dataclass
class UnbroadcastGrad(GradFunc):
    x_shape: Shape

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {"x": UnbroadcastThunk(dy, self.x_shape)}


@dataclass
class AddGrad(GradFunc):
    a_shape: Shape
    b_shape: Shape

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {
            "a": UnbroadcastThunk(dy, self.a_shape),
            "b": UnbroadcastThunk(dy, self.b_shape),
        }


@dataclass
class MultiplyThunk(GradThunk):
    dy: Tensor
    other: Tensor
    shape: Shape

    def compute(self) -> Tensor:
        return unbroadcast(multiply(self.dy, self.other), self.shape)


@dataclass
class MultiplyGrad(GradFunc):
    a: Tensor
    b: Tensor

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {
            "a": MultiplyThunk(dy, self.b, self.a.shape),
            "b": MultiplyThunk(dy, self.a, self.b.shape),
        }


@dataclass
class MaskedThunk(GradThunk):
    """
    Route ``dy`` through the positions where ``mask`` equals ``pass_where``.
    """

    dy: Tensor
    mask: Tensor
    shape: Shape
    pass_where: bool = True

    def compute(self) -> Tensor:
        zero = zeros_like(self.dy)
        if self.pass_where:
            routed = where(self.mask, self.dy, zero)
        else:
            routed = where(self.mask, zero, self.dy)
        return unbroadcast(routed, self.shape)


@dataclass
class MaximumThunk(GradThunk):
    dy: Tensor
    a: Tensor
    b: Tensor
    for_a: bool

    def compute(self) -> Tensor:
        a_wins = greater_equal(self.a, self.b)
        shape = self.a.shape if self.for_a else self.b.shape
        return MaskedThunk(self.dy, a_wins, shape, pass_where=self.for_a).compute()


@dataclass
class MaximumGrad(GradFunc):
    a: Tensor
    b: Tensor

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {
            "a": MaximumThunk(dy, self.a, self.b, for_a=True),
            "b": MaximumThunk(dy, self.a, self.b, for_a=False),
        }


@dataclass
class WhereGrad(GradFunc):
    condition: Tensor
    a_shape: Shape
    b_shape: Shape

    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        return {
            "a": MaskedThunk(dy, self.condition, self.a_shape, pass_where=True),
            "b": MaskedThunk(dy, self.condition, self.b_shape, pass_where=False),
        }
