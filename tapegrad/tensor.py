import itertools
import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

# Canonical dtype names and the numpy scalar type backing each of them.
# Array modules that mirror numpy's API (cupy) accept the same scalar types.
DTYPES = {
    "float32": np.float32,
    "int32": np.int32,
    "bool": np.bool_,
}

_tensor_ids = itertools.count()


def canonical_dtype(array_dtype: Any) -> str:
    """
    Map an array-module dtype onto one of the canonical dtype names.

    Floating types collapse to ``float32``, integer types to ``int32`` and
    booleans to ``bool``.

    Args:
        array_dtype (Any): A numpy (or numpy-compatible) dtype.

    Returns:
        str: The canonical dtype name.

    Raises:
        TypeError: If the dtype is not numeric or boolean.
    """
    kind = np.dtype(array_dtype).kind
    if kind == "b":
        return "bool"
    if kind in ("i", "u"):
        return "int32"
    if kind == "f":
        return "float32"
    raise TypeError(f"Unsupported array dtype {array_dtype}")


class Tensor:
    """
    An immutable n-dimensional array value.

    A `Tensor` wraps an array owned by the active backend's array module together
    with its canonical dtype. Neither the shape nor the dtype changes after
    creation; every operation returns a new `Tensor`. Each tensor carries a
    process-unique ``id`` which the engine uses to key gradients on the tape.

    Tensors are normally created by a backend or by
    :func:`tapegrad.tensor_util.convert_to_tensor`, not directly.
    """

    __slots__ = ("_data", "_dtype", "_id")

    def __init__(self, data: Any, dtype: Optional[str] = None):
        """
        Initialize a `Tensor`.

        Args:
            data (Any): A backend array (numpy or cupy ndarray).
            dtype (Optional[str], optional): The canonical dtype. If None, it is
                inferred from ``data``. The array is cast when its dtype differs
                from the canonical one.
        """
        if dtype is None:
            dtype = canonical_dtype(data.dtype)
        if dtype not in DTYPES:
            raise TypeError(f"Unknown dtype {dtype!r}")
        if data.dtype != DTYPES[dtype]:
            data = data.astype(DTYPES[dtype])
        self._data = data
        self._dtype = dtype
        self._id = next(_tensor_ids)

    @property
    def id(self) -> int:
        return self._id

    @property
    def data(self) -> Any:
        """
        The backing array. Treat it as read-only.
        """
        return self._data

    @property
    def dtype(self) -> str:
        return self._dtype

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(d) for d in self._data.shape)

    @property
    def rank(self) -> int:
        return len(self._data.shape)

    @property
    def ndim(self) -> int:
        return self.rank

    @property
    def size(self) -> int:
        return int(self._data.size)

    def numpy(self) -> np.ndarray:
        """
        Return a host-side numpy copy of the data.

        Returns:
            np.ndarray: The tensor values.
        """
        data = self._data
        if hasattr(data, "get"):
            # cupy arrays live on the device
            data = data.get()
        return np.array(data, copy=True)

    def tolist(self) -> Union[List[Any], Any]:
        return self.numpy().tolist()

    ########### Operator sugar ###########
    # Imports are local to avoid a circular import with the operator modules.

    def reshape(self, *shape: Union[int, Sequence[int]]) -> "Tensor":
        """
        Return a tensor with the same values and a new shape.

        Args:
            *shape (Union[int, Sequence[int]]): The new shape, either as separate ints
                or as a single tuple/list. One dimension may be -1.

        Returns:
            Tensor: The reshaped tensor.
        """
        from tapegrad import array_ops

        if len(shape) == 1 and isinstance(shape[0], (tuple, list)):
            shape = tuple(shape[0])
        return array_ops.reshape(self, shape)

    def transpose(self, perm: Optional[Sequence[int]] = None) -> "Tensor":
        """
        Permute the dimensions of this tensor.

        Args:
            perm (Optional[Sequence[int]], optional): The new order of the axes.
                Defaults to reversing them.

        Returns:
            Tensor: The transposed tensor.
        """
        from tapegrad import array_ops

        return array_ops.transpose(self, perm)

    def expand_dims(self, axis: int = 0) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.expand_dims(self, axis)

    def sum(
        self, axis: Optional[Union[int, Sequence[int]]] = None, keepdims: bool = False
    ) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.sum(self, axis=axis, keepdims=keepdims)

    def gather(self, indices: Any, axis: int = 0) -> "Tensor":
        """
        Gather slices of this tensor along ``axis``.
        See :func:`tapegrad.segment_ops.gather`.

        Example:
            >>> x = tensor([[1, 2], [3, 4]])
            >>> x.gather([1, 1, 0]).tolist()
            [[3.0, 4.0], [3.0, 4.0], [1.0, 2.0]]
        """
        from tapegrad import segment_ops

        return segment_ops.gather(self, indices, axis)

    def unsorted_segment_sum(self, segment_ids: Any, num_segments: int) -> "Tensor":
        """
        Sum the rows of this tensor by segment id.
        See :func:`tapegrad.segment_ops.unsorted_segment_sum`.
        """
        from tapegrad import segment_ops

        return segment_ops.unsorted_segment_sum(self, segment_ids, num_segments)

    def __add__(self, other: Any) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.add(self, other)

    def __radd__(self, other: Any) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.add(other, self)

    def __mul__(self, other: Any) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.multiply(self, other)

    def __rmul__(self, other: Any) -> "Tensor":
        from tapegrad import array_ops

        return array_ops.multiply(other, self)

    def __repr__(self) -> str:
        return f"Tensor(shape={self.shape}, dtype={self.dtype}, data={self.numpy()})"

    def __hash__(self) -> int:
        return self._id
