import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence, Tuple

import numpy as np

from tapegrad.tensor import DTYPES, Tensor
from tapegrad.utils import InvalidArgumentError

logger = logging.getLogger(__name__)


class Backend(ABC):
    """
    Capability interface for the numeric kernels every operator is built on.

    A backend is stateless with respect to tensor values: a kernel reads its input
    tensors and returns a new `Tensor`, and it never keeps references to them after
    the call. The engine selects one backend and routes every forward computation
    through it.
    """

    name = "base"

    ########### Segment kernels ###########
    @abstractmethod
    def gather(self, x: Tensor, indices: Tensor, axis: int) -> Tensor:
        """
        Select slices of ``x`` along ``axis``.

        The output has the shape of ``x`` with dimension ``axis`` replaced by the
        shape of ``indices``. Out-of-range indices are backend-defined.
        """
        raise NotImplementedError

    @abstractmethod
    def unsorted_segment_sum(
        self, x: Tensor, segment_ids: Tensor, num_segments: int
    ) -> Tensor:
        """
        Sum the rows of ``x`` into ``num_segments`` buckets by ``segment_ids``.

        Rows with a negative segment id contribute to no segment. Segments that
        receive no rows are zero.
        """
        raise NotImplementedError

    ########### Shape kernels ###########
    @abstractmethod
    def reshape(self, x: Tensor, shape: Sequence[int]) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def transpose(self, x: Tensor, perm: Sequence[int]) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def expand_dims(self, x: Tensor, axis: int) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def broadcast_to(self, x: Tensor, shape: Sequence[int]) -> Tensor:
        raise NotImplementedError

    ########### Arithmetic and logical kernels ###########
    @abstractmethod
    def sum(self, x: Tensor, axes: Sequence[int], keepdims: bool) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def add(self, a: Tensor, b: Tensor) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def multiply(self, a: Tensor, b: Tensor) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def maximum(self, a: Tensor, b: Tensor) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def greater_equal(self, a: Tensor, b: Tensor) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def logical_and(self, a: Tensor, b: Tensor) -> Tensor:
        raise NotImplementedError

    @abstractmethod
    def select(self, condition: Tensor, a: Tensor, b: Tensor) -> Tensor:
        """
        Elementwise ``a`` where ``condition`` is true, ``b`` elsewhere.
        """
        raise NotImplementedError

    ########### Constructors ###########
    @abstractmethod
    def fill(self, shape: Sequence[int], value: Any, dtype: str) -> Tensor:
        raise NotImplementedError

    def ones(self, shape: Sequence[int], dtype: str = "float32") -> Tensor:
        return self.fill(shape, 1, dtype)

    def zeros(self, shape: Sequence[int], dtype: str = "float32") -> Tensor:
        return self.fill(shape, 0, dtype)

    @abstractmethod
    def from_values(self, values: np.ndarray, dtype: str) -> Tensor:
        """
        Create a tensor from host values already validated for ``dtype``.
        """
        raise NotImplementedError

    @abstractmethod
    def to_numpy(self, x: Tensor) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class NumpyBackend(Backend):
    """
    Reference backend running every kernel on an array module with numpy's API.

    ``xp`` is the array module; subclasses swap it for a drop-in replacement.
    """

    name = "numpy"

    def __init__(self):
        self.xp = np

    def _wrap(self, data: Any, dtype: str = None) -> Tensor:
        return Tensor(self.xp.asarray(data), dtype)

    def _scatter_add(self, out: Any, indices: Any, values: Any) -> None:
        # Unbuffered, so repeated indices accumulate
        self.xp.add.at(out, indices, values)

    def gather(self, x: Tensor, indices: Tensor, axis: int) -> Tensor:
        # take() wraps negative indices, which the segment-sum backward would drop
        size = x.shape[axis]
        idx = indices.data
        if idx.size and (int(idx.min()) < 0 or int(idx.max()) >= size):
            raise IndexError(
                f"gather indices must be in range [0, {size}) on axis {axis}, "
                f"got values in [{int(idx.min())}, {int(idx.max())}]"
            )
        return self._wrap(self.xp.take(x.data, idx, axis=axis), x.dtype)

    def unsorted_segment_sum(
        self, x: Tensor, segment_ids: Tensor, num_segments: int
    ) -> Tensor:
        out_shape: Tuple[int, ...] = (num_segments,) + x.shape[1:]
        out = self.xp.zeros(out_shape, dtype=x.data.dtype)
        ids = segment_ids.data
        keep = ids >= 0
        self._scatter_add(out, ids[keep], x.data[keep])
        return self._wrap(out, x.dtype)

    def reshape(self, x: Tensor, shape: Sequence[int]) -> Tensor:
        return self._wrap(self.xp.reshape(x.data, tuple(shape)), x.dtype)

    def transpose(self, x: Tensor, perm: Sequence[int]) -> Tensor:
        return self._wrap(self.xp.transpose(x.data, tuple(perm)), x.dtype)

    def expand_dims(self, x: Tensor, axis: int) -> Tensor:
        return self._wrap(self.xp.expand_dims(x.data, axis), x.dtype)

    def broadcast_to(self, x: Tensor, shape: Sequence[int]) -> Tensor:
        # broadcast_to returns a read-only strided view, copy it into its own buffer
        out = self.xp.broadcast_to(x.data, tuple(shape)).copy()
        return self._wrap(out, x.dtype)

    def sum(self, x: Tensor, axes: Sequence[int], keepdims: bool) -> Tensor:
        out = self.xp.sum(x.data, axis=tuple(axes), keepdims=keepdims)
        dtype = "int32" if x.dtype == "bool" else x.dtype
        return self._wrap(out, dtype)

    def add(self, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.add(a.data, b.data))

    def multiply(self, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.multiply(a.data, b.data))

    def maximum(self, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.maximum(a.data, b.data))

    def greater_equal(self, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.greater_equal(a.data, b.data), "bool")

    def logical_and(self, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.logical_and(a.data, b.data), "bool")

    def select(self, condition: Tensor, a: Tensor, b: Tensor) -> Tensor:
        return self._wrap(self.xp.where(condition.data, a.data, b.data))

    def fill(self, shape: Sequence[int], value: Any, dtype: str) -> Tensor:
        return self._wrap(self.xp.full(tuple(shape), value, dtype=DTYPES[dtype]), dtype)

    def from_values(self, values: np.ndarray, dtype: str) -> Tensor:
        # Always copy so later writes to the caller's array never reach the tensor
        return self._wrap(self.xp.array(values, dtype=DTYPES[dtype], copy=True), dtype)

    def to_numpy(self, x: Tensor) -> np.ndarray:
        return x.numpy()


class CupyBackend(NumpyBackend):
    """
    GPU backend using cupy as a drop-in replacement for numpy.

    Raises:
        ImportError: If cupy is not installed.
        cupy.cuda.runtime.CUDARuntimeError: If no CUDA device is available.
    """

    name = "cupy"

    def __init__(self):
        import cupy  # type: ignore

        _ = cupy.cuda.runtime.getDeviceCount()  # Check if a CUDA device is available
        self.xp = cupy

    def _scatter_add(self, out: Any, indices: Any, values: Any) -> None:
        import cupyx  # type: ignore

        cupyx.scatter_add(out, indices, values)


BACKENDS = {
    NumpyBackend.name: NumpyBackend,
    CupyBackend.name: CupyBackend,
}


def get_backend(name: str) -> Backend:
    """
    Instantiate a backend by name.

    Args:
        name (str): One of the keys of ``BACKENDS`` ("numpy", "cupy").

    Returns:
        Backend: A fresh backend instance.

    Raises:
        InvalidArgumentError: If ``name`` is not a known backend.
    """
    if name not in BACKENDS:
        raise InvalidArgumentError(
            f"Unknown backend {name!r}, expected one of {sorted(BACKENDS)}"
        )
    return BACKENDS[name]()
