import logging
from unittest import TestCase, mock

import numpy as np
import pytest

from tapegrad import array_ops, segment_ops
from tapegrad.backend import BACKENDS, NumpyBackend, get_backend
from tapegrad.config import EngineConfig
from tapegrad.engine import Engine
from tapegrad.logger import ColorFormatter, setup_logger
from tapegrad.op_registry import OP_TABLE, build_registry
from tapegrad.utils import InvalidArgumentError, assert_arg


class TestAssertArg(TestCase):
    def test_assert_arg(self):
        assert_arg(True, "never raised", "op")
        with pytest.raises(InvalidArgumentError, match="^gather: bad axis$"):
            assert_arg(False, "bad axis", "gather")
        with pytest.raises(ValueError, match="^bad axis$"):
            assert_arg(False, "bad axis")


class TestBackendRegistry(TestCase):
    def test_get_backend(self):
        assert isinstance(get_backend("numpy"), NumpyBackend)
        assert set(BACKENDS) == {"numpy", "cupy"}
        with pytest.raises(InvalidArgumentError, match="Unknown backend"):
            get_backend("tpu")

    def test_numpy_kernels_do_not_mutate_inputs(self):
        backend = NumpyBackend()
        x = backend.from_values(np.array([1.0, 2.0, 3.0]), "float32")
        ids = backend.from_values(np.array([0, -1, 0]), "int32")
        out = backend.unsorted_segment_sum(x, ids, 2)
        assert out.tolist() == [4.0, 0.0]
        assert x.tolist() == [1.0, 2.0, 3.0]
        assert ids.tolist() == [0, -1, 0]


class TestConfig(TestCase):
    def test_defaults(self):
        config = EngineConfig()
        assert config.backend == "numpy"
        assert config.debug is False

    def test_from_env(self):
        with mock.patch.dict(
            "os.environ", {"TAPEGRAD_BACKEND": "numpy", "DEBUG": "1"}, clear=True
        ):
            config = EngineConfig.from_env()
        assert config == EngineConfig(backend="numpy", debug=True)

        with mock.patch.dict("os.environ", {}, clear=True):
            assert EngineConfig.from_env() == EngineConfig()

    def test_engine_uses_configured_backend(self):
        engine = Engine(config=EngineConfig(backend="numpy"))
        assert isinstance(engine.backend, NumpyBackend)
        with pytest.raises(InvalidArgumentError):
            Engine(config=EngineConfig(backend="tpu"))


class TestLogger(TestCase):
    def test_setup_logger_does_not_duplicate_handlers(self):
        name = "tapegrad.test_logger"
        logger = setup_logger(name, debug=True)
        assert logger.level == logging.DEBUG
        setup_logger(name, debug=False)
        assert logger.level == logging.INFO
        assert sum(isinstance(h.formatter, ColorFormatter) for h in logger.handlers) == 1

    def test_color_formatter(self):
        record = logging.LogRecord("tapegrad", logging.WARNING, __file__, 1, "careful", None, None)
        formatted = ColorFormatter().format(record)
        assert formatted.startswith(ColorFormatter.LEVEL_COLORS[logging.WARNING])
        assert "careful" in formatted
        assert formatted.endswith(ColorFormatter.reset)

    def test_color_formatter_custom_layout_and_unknown_level(self):
        formatter = ColorFormatter("%(levelname)s|%(message)s")
        record = logging.LogRecord("tapegrad", 25, __file__, 1, "progress", None, None)
        formatted = formatter.format(record)
        assert formatted == f"{ColorFormatter.fallback_color}Level 25|progress{ColorFormatter.reset}"


class TestOpRegistry(TestCase):
    def test_registry_resolves_every_operator(self):
        registry = build_registry()
        assert len(registry) == len(OP_TABLE)
        assert registry["gather"].fn is segment_ops.gather
        assert registry["unsorted_segment_sum"].subheading == "Segment"
        assert registry["reshape"].fn is array_ops.reshape
        assert "sum along segments" in registry["unsorted_segment_sum"].doc
