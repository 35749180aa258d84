"""
Logging Setup
Console + rotating file logging for the dashboard and the agent.
"""
import logging
import logging.handlers
import os
import sys
from typing import Optional


def setup_logging(
    name: str,
    log_dir: Optional[str] = None,
    log_level: str = "INFO",
    console_output: bool = True,
) -> logging.Logger:
    """
    Configure the named logger.

    Module loggers (``logging.getLogger(__name__)``) propagate to the root
    logger, so handlers are attached there; ``name`` only picks the log file.

    Args:
        name: Service name, used for the log file (dashboard, agent)
        log_dir: Directory for log files; no file handler when None
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        console_output: Whether to also log to stdout

    Returns:
        The service logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Clear handlers from a previous call to avoid duplicates
    for handler in list(root.handlers):
        if getattr(handler, "_siteherd", False):
            root.removeHandler(handler)
            handler.close()

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    simple_formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    if log_dir:
        log_dir = os.path.expanduser(log_dir)
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name.lower()}.log"),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        file_handler._siteherd = True
        root.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(simple_formatter)
        console_handler._siteherd = True
        root.addHandler(console_handler)

    logger = logging.getLogger(name)
    logger.debug("%s logging initialized", name)
    return logger
