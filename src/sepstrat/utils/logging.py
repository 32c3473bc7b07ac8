"""Logging utilities.

This module provides functions for configuring Python's logging system
to output to both console and file, and the progress sink used for verbose
narration.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

ProgressCallback = Callable[[str], None]


def setup_logging(
    run_dir: Optional[str] = None,
    log_filename: str = "sepstrat.log",
    level: int = logging.INFO,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Setup logging to console and optionally to file.

    Args:
        run_dir: Path to run directory. If provided, logs will also be
                 written to <run_dir>/<log_filename>.
        log_filename: Name of log file within run_dir.
        level: Logging level (default: INFO).
        stream: Console stream (default: stdout).

    Returns:
        Root logger instance.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers = []

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if run_dir is not None:
        run_path = Path(run_dir)
        run_path.mkdir(parents=True, exist_ok=True)
        log_file = run_path / log_filename

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to {log_file}")

    return root_logger


def make_progress(
    verbose: bool,
    progress: Optional[ProgressCallback],
    logger: logging.Logger,
) -> ProgressCallback:
    """Resolve the narration sink for one call.

    Args:
        verbose: Whether narration is requested at all.
        progress: Caller-supplied sink. Takes precedence over the logger.
        logger: Fallback sink, messages are emitted at INFO.

    Returns:
        Callable accepting one message. A no-op when verbose is False.
    """
    if not verbose:
        return lambda message: None
    if progress is not None:
        return progress
    return logger.info
