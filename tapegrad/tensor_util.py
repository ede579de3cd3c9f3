import logging
import numbers
from typing import Any, Optional

import numpy as np

from tapegrad.tensor import DTYPES, Tensor, canonical_dtype
from tapegrad.utils import InvalidArgumentError

logger = logging.getLogger(__name__)


def is_int(value: Any) -> bool:
    """
    Whether ``value`` is a whole number (an integer, or a float with no fractional part).

    Booleans are not considered integers.
    """
    if isinstance(value, (bool, np.bool_)):
        return False
    if isinstance(value, numbers.Integral):
        return True
    if isinstance(value, numbers.Real):
        return float(value).is_integer()
    return False


def _infer_dtype(values: np.ndarray, from_array: bool) -> str:
    if values.dtype.kind == "b":
        return "bool"
    # Python literals default to float32, arrays keep their integer kind
    if from_array and values.dtype.kind in ("i", "u"):
        return "int32"
    return "float32"


def convert_to_tensor(
    x: Any, arg_name: str, op_name: str, dtype: Optional[str] = None
) -> Tensor:
    """
    Coerce ``x`` into a canonical `Tensor` on the current backend.

    A `Tensor` is returned unchanged; the caller checks its dtype. Python scalars,
    nested sequences and numpy arrays are converted. When ``dtype`` is given, literal
    values are parsed as that dtype; when it is omitted, booleans become ``bool``,
    integer numpy arrays become ``int32`` and everything else becomes ``float32``.

    Args:
        x (Any): A tensor or a literal value.
        arg_name (str): The name of the argument being converted, used in error messages.
        op_name (str): The name of the operator performing the conversion.
        dtype (Optional[str], optional): The expected dtype for literal values.

    Returns:
        Tensor: The canonical tensor.

    Raises:
        InvalidArgumentError: If ``x`` is not numeric, or cannot be converted to
            ``dtype`` without losing information.

    Example:
        >>> convert_to_tensor([1, 2], "indices", "gather", "int32").dtype
        'int32'
    """
    if isinstance(x, Tensor):
        return x

    from tapegrad.engine import get_engine

    from_array = hasattr(x, "dtype") and hasattr(x, "shape")
    try:
        values = np.asarray(x.get() if hasattr(x, "get") else x)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(
            f"{op_name}: argument '{arg_name}' could not be converted to a tensor: {e}"
        ) from e

    if values.dtype.kind not in ("b", "i", "u", "f"):
        raise InvalidArgumentError(
            f"{op_name}: argument '{arg_name}' must be numeric or boolean, "
            f"got {values.dtype}"
        )

    if dtype is None:
        dtype = _infer_dtype(values, from_array)
    if dtype not in DTYPES:
        raise InvalidArgumentError(f"{op_name}: unknown dtype {dtype!r}")

    if dtype == "int32" and values.dtype.kind == "f":
        if not np.all(np.mod(values, 1) == 0):
            raise InvalidArgumentError(
                f"{op_name}: argument '{arg_name}' must be int32, "
                f"got non-integral {canonical_dtype(values.dtype)} values"
            )
    elif dtype == "bool" and values.dtype.kind != "b":
        raise InvalidArgumentError(
            f"{op_name}: argument '{arg_name}' must be bool, "
            f"got {canonical_dtype(values.dtype)}"
        )

    if dtype == "int32" and values.dtype.kind in ("i", "u", "f") and values.size:
        bounds = np.iinfo(np.int32)
        # the cast to int32 would wrap these around silently
        if values.min() < bounds.min or values.max() > bounds.max:
            raise InvalidArgumentError(
                f"{op_name}: argument '{arg_name}' has values outside the int32 "
                f"range [{bounds.min}, {bounds.max}]"
            )

    return get_engine().backend.from_values(values, dtype)
