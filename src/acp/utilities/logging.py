"""Logging utilities for ACP."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

# Library code only configures its own namespace logger, never the root logger
_ACP_LOGGER_NAME = "acp"


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the ACP namespace.

    Args:
        name: The name of the logger.

    Returns:
        A configured logger instance.
    """
    if name != _ACP_LOGGER_NAME and not name.startswith(f"{_ACP_LOGGER_NAME}."):
        name = f"{_ACP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """Configure logging for ACP.

    Log records go to stderr: stdout carries protocol traffic for stdio agents.
    Repeated calls only change the level.

    Args:
        level: The log level to use.
    """
    acp_logger = logging.getLogger(_ACP_LOGGER_NAME)
    acp_logger.setLevel(level)

    if acp_logger.handlers:
        return

    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    acp_logger.addHandler(handler)
