from unittest import TestCase

import numpy as np
import pytest

from tapegrad.array_ops import tensor
from tapegrad.tensor import Tensor, canonical_dtype
from tapegrad.tensor_util import convert_to_tensor, is_int
from tapegrad.utils import InvalidArgumentError


class TestTensor(TestCase):
    def setUp(self) -> None:
        self.x_scalar = tensor(2.0)
        self.x_vector = tensor([1.0, 2.0])
        self.x_matrix = tensor([[1.0, 2.0], [3.0, 4.0]])

    def test_tensor_properties(self):
        assert self.x_scalar.shape == ()
        assert self.x_scalar.rank == 0
        assert self.x_matrix.shape == (2, 2)
        assert self.x_matrix.rank == self.x_matrix.ndim == 2
        assert self.x_matrix.size == 4
        assert self.x_matrix.dtype == "float32"

    def test_ids_are_unique(self):
        assert len({self.x_scalar.id, self.x_vector.id, self.x_matrix.id}) == 3
        assert hash(self.x_vector) == self.x_vector.id

    def test_shape_and_dtype_are_read_only(self):
        with pytest.raises(AttributeError):
            self.x_matrix.shape = (4,)
        with pytest.raises(AttributeError):
            self.x_matrix.dtype = "int32"

    def test_tensor_does_not_alias_source_array(self):
        source = np.array([1.0, 2.0, 3.0], dtype=np.float32)
        x = tensor(source)
        source[0] = 100.0
        assert x.tolist() == [1.0, 2.0, 3.0]

        ids = np.array([0, 1], dtype=np.int32)
        y = convert_to_tensor(ids, "indices", "gather", "int32")
        ids[:] = -1
        assert y.tolist() == [0, 1]

    def test_numpy_returns_a_copy(self):
        values = self.x_vector.numpy()
        values[0] = 100.0
        assert self.x_vector.tolist() == [1.0, 2.0]

    def test_operations_return_new_tensors(self):
        reshaped = self.x_matrix.reshape(4)
        assert reshaped is not self.x_matrix
        assert self.x_matrix.shape == (2, 2)
        assert reshaped.shape == (4,)

    def test_array_dtype_is_canonicalized(self):
        assert Tensor(np.array([1, 2], dtype=np.int64)).dtype == "int32"
        assert Tensor(np.array([1, 2], dtype=np.int64)).data.dtype == np.int32
        assert Tensor(np.array([1.0], dtype=np.float64)).data.dtype == np.float32
        assert Tensor(np.array([1, 0]), "bool").tolist() == [True, False]

    def test_canonical_dtype(self):
        assert canonical_dtype(np.uint8) == "int32"
        assert canonical_dtype(np.float16) == "float32"
        assert canonical_dtype(np.bool_) == "bool"
        with pytest.raises(TypeError):
            canonical_dtype(np.complex64)

    def test_repr(self):
        assert "shape=(2,)" in repr(self.x_vector)


class TestConvertToTensor(TestCase):
    def test_tensor_passes_through(self):
        x = tensor([1.0])
        assert convert_to_tensor(x, "x", "op") is x
        # the caller validates a tensor's dtype, conversion does not cast it
        assert convert_to_tensor(x, "x", "op", "int32") is x

    def test_literal_dtype_inference(self):
        assert convert_to_tensor([1, 2], "x", "op").dtype == "float32"
        assert convert_to_tensor(3, "x", "op").dtype == "float32"
        assert convert_to_tensor([True, False], "x", "op").dtype == "bool"
        assert convert_to_tensor(np.array([1, 2]), "x", "op").dtype == "int32"
        assert convert_to_tensor(np.array([1.5]), "x", "op").dtype == "float32"

    def test_requested_int32(self):
        out = convert_to_tensor([1.0, 2.0], "indices", "gather", "int32")
        assert out.dtype == "int32"
        assert out.tolist() == [1, 2]

    def test_non_integral_values_cannot_become_int32(self):
        with pytest.raises(InvalidArgumentError, match="gather: argument 'indices'"):
            convert_to_tensor([1.0, 2.5], "indices", "gather", "int32")

    def test_int32_overflow_is_rejected(self):
        with pytest.raises(InvalidArgumentError, match="outside the int32 range"):
            convert_to_tensor(np.array([0, 2**31], dtype=np.int64), "indices", "gather", "int32")
        with pytest.raises(InvalidArgumentError, match="outside the int32 range"):
            convert_to_tensor([-(2**31) - 1], "indices", "gather", "int32")
        with pytest.raises(InvalidArgumentError, match="outside the int32 range"):
            convert_to_tensor(np.array([3e9]), "indices", "gather", "int32")
        edge = convert_to_tensor([2**31 - 1, -(2**31)], "indices", "gather", "int32")
        assert edge.tolist() == [2**31 - 1, -(2**31)]

    def test_non_numeric_values_are_rejected(self):
        with pytest.raises(InvalidArgumentError, match="numeric"):
            convert_to_tensor(["a", "b"], "x", "op")
        with pytest.raises(InvalidArgumentError):
            convert_to_tensor([[1.0], [2.0, 3.0]], "x", "op")

    def test_unknown_dtype(self):
        with pytest.raises(InvalidArgumentError, match="unknown dtype"):
            convert_to_tensor([1.0], "x", "op", "float64")


class TestIsInt(TestCase):
    def test_is_int(self):
        assert is_int(3)
        assert is_int(np.int32(3))
        assert is_int(3.0)
        assert not is_int(3.5)
        assert not is_int(True)
        assert not is_int("3")
        assert not is_int(None)
