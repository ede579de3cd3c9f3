"""
Documentation metadata for the public operators.

The table is declarative and is only read by `build_registry`; operators never
consult it when they run.
"""

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)

# (module, operator name, heading, subheading)
OP_TABLE = (
    ("tapegrad.segment_ops", "gather", "Tensors", "Slicing and Joining"),
    ("tapegrad.segment_ops", "unsorted_segment_sum", "Operations", "Segment"),
    ("tapegrad.array_ops", "tensor", "Tensors", "Creation"),
    ("tapegrad.array_ops", "scalar", "Tensors", "Creation"),
    ("tapegrad.array_ops", "ones", "Tensors", "Creation"),
    ("tapegrad.array_ops", "zeros", "Tensors", "Creation"),
    ("tapegrad.array_ops", "ones_like", "Tensors", "Creation"),
    ("tapegrad.array_ops", "zeros_like", "Tensors", "Creation"),
    ("tapegrad.array_ops", "reshape", "Tensors", "Transformations"),
    ("tapegrad.array_ops", "transpose", "Operations", "Matrices"),
    ("tapegrad.array_ops", "expand_dims", "Tensors", "Transformations"),
    ("tapegrad.array_ops", "broadcast_to", "Tensors", "Transformations"),
    ("tapegrad.array_ops", "sum", "Operations", "Reduction"),
    ("tapegrad.array_ops", "add", "Operations", "Arithmetic"),
    ("tapegrad.array_ops", "multiply", "Operations", "Arithmetic"),
    ("tapegrad.array_ops", "maximum", "Operations", "Arithmetic"),
    ("tapegrad.array_ops", "greater_equal", "Operations", "Logical"),
    ("tapegrad.array_ops", "logical_and", "Operations", "Logical"),
    ("tapegrad.array_ops", "where", "Operations", "Logical"),
)


@dataclass(frozen=True)
class OpInfo:
    name: str
    heading: str
    subheading: str
    fn: Callable

    @property
    def doc(self) -> str:
        return (self.fn.__doc__ or "").strip()


def build_registry() -> Dict[str, OpInfo]:
    """
    Resolve every entry of `OP_TABLE` to its operator.

    Returns:
        Dict[str, OpInfo]: Operator metadata keyed by operator name.
    """
    registry = {}
    for module_name, name, heading, subheading in OP_TABLE:
        fn = getattr(importlib.import_module(module_name), name)
        registry[name] = OpInfo(name, heading, subheading, fn)
    logger.debug(f"Registered {len(registry)} operators")
    return registry
