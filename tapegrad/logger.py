import logging
import os
import sys
from typing import Optional


class ColorFormatter(logging.Formatter):
    """
    A logging formatter that colors each record by its severity level.

    One plain formatter is built per level up front and wrapped in that level's
    ANSI color; levels without a color of their own are printed grey.

    Args:
        fmt (str, optional): The record layout, in `logging.Formatter` syntax.

    Examples:
        >>> import logging
        >>> from tapegrad.logger import ColorFormatter
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(ColorFormatter())
        >>> logging.getLogger("tapegrad").addHandler(handler)
    """

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    reset = "\x1b[0m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[36;20m",  # cyan
        logging.INFO: "\x1b[32;20m",  # green
        logging.WARNING: "\x1b[33;20m",  # yellow
        logging.ERROR: "\x1b[31;20m",  # red
        logging.CRITICAL: "\x1b[31;1m",  # bold red
    }
    fallback_color = "\x1b[38;20m"  # grey

    def __init__(self, fmt: Optional[str] = None):
        layout = fmt or self.DEFAULT_FORMAT
        super().__init__(layout)
        self._formatters = {
            level: logging.Formatter(f"{color}{layout}{self.reset}")
            for level, color in self.LEVEL_COLORS.items()
        }
        self._fallback = logging.Formatter(f"{self.fallback_color}{layout}{self.reset}")

    def format(self, record: logging.LogRecord) -> str:
        return self._formatters.get(record.levelno, self._fallback).format(record)


def setup_logger(name: Optional[str] = "tapegrad", debug: Optional[bool] = None):
    """
    Set up a logger with colored console output.

    The level is DEBUG when ``debug`` is true, or when ``debug`` is None and the
    ``DEBUG`` environment variable is set; INFO otherwise. Calling this again for the
    same logger only updates the level, so handlers are never duplicated.

    Args:
        name (str, optional): The name of the logger. Defaults to the package logger,
            which every ``tapegrad.*`` module logger propagates to.
        debug (bool, optional): Force the debug level on or off.

    Returns:
        logging.Logger: The configured logger instance.

    Examples:
        >>> from tapegrad.logger import setup_logger
        >>> logger = setup_logger(debug=True)
        >>> logger.debug("tape entries are printed from here on")
    """
    if debug is None:
        debug = bool(os.getenv("DEBUG"))
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if not any(isinstance(h.formatter, ColorFormatter) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColorFormatter())
        logger.addHandler(console_handler)

    return logger
