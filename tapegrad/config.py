"""
This module contains the schema for configuring the engine.
It's optional to use; `Engine()` falls back to `EngineConfig.from_env()`.
"""

import os
from dataclasses import dataclass


@dataclass
class EngineConfig:
    """
    Configuration for a `tapegrad.engine.Engine`.
    """

    # Name of the backend in `tapegrad.backend.BACKENDS`
    backend: str = "numpy"
    # Attach a debug-level console logger to the package when the engine is created
    debug: bool = False

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Build a config from the ``TAPEGRAD_BACKEND`` and ``DEBUG`` environment variables.
        """
        return cls(
            backend=os.getenv("TAPEGRAD_BACKEND", cls.backend),
            debug=bool(os.getenv("DEBUG")),
        )
