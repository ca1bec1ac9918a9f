"""
Common utilities for vsphere-machine.

This module contains shared logging and process management helpers used
across the driver, the govc backend and the SSH helpers.
"""

import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Union


# Color codes for terminal output
class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    WHITE = '\033[37m'

    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_BLUE = '\033[94m'
    BRIGHT_MAGENTA = '\033[95m'
    BRIGHT_CYAN = '\033[96m'


class ColorFormatter(logging.Formatter):
    """Formatter that colors level names when writing to a terminal."""

    COLORS = {
        logging.DEBUG: Colors.DIM + Colors.WHITE,
        logging.INFO: Colors.BRIGHT_BLUE,
        logging.WARNING: Colors.BRIGHT_YELLOW,
        logging.ERROR: Colors.BRIGHT_RED,
        logging.CRITICAL: Colors.BOLD + Colors.BRIGHT_RED,
    }

    def format(self, record):
        color = self.COLORS.get(record.levelno, Colors.RESET)
        formatted = super().format(record)

        if hasattr(sys.stdout, 'isatty') and sys.stdout.isatty():
            level_color = color + record.levelname + Colors.RESET
            formatted = formatted.replace(record.levelname, level_color, 1)

            message = str(record.msg)
            if "✅" in message:
                formatted = Colors.BRIGHT_GREEN + formatted + Colors.RESET
            elif "🚀" in message:
                formatted = Colors.BRIGHT_MAGENTA + formatted + Colors.RESET
            elif "🔧" in message:
                formatted = Colors.BRIGHT_CYAN + formatted + Colors.RESET

        return formatted


def setup_logging(verbose: bool = False, logger_name: Optional[str] = None) -> logging.Logger:
    """
    Set up colored logging configuration.

    Args:
        verbose: Enable debug logging if True
        logger_name: Name of the logger to configure (default: root logger)

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()

    formatter = ColorFormatter(
        fmt="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger.setLevel(level)
    logger.handlers = [handler]

    return logger


def get_last_lines(file_path: Union[str, Path], num_lines: int = 20) -> List[str]:
    """
    Get the last N lines from a file.

    Args:
        file_path: Path to the file to read
        num_lines: Number of lines to retrieve from the end

    Returns:
        List of last N lines from the file
    """
    logger = logging.getLogger(__name__)

    try:
        with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
            lines = f.readlines()
            return lines[-num_lines:] if len(lines) > num_lines else lines
    except OSError as e:
        logger.warning(f"Failed to read log file {file_path}: {e}")
        return []


def _log_tail(label: str, path: str) -> None:
    logger = logging.getLogger(__name__)
    lines = get_last_lines(path, 20)
    if lines:
        logger.error(f"Last 20 lines of {label}:")
        for line in lines:
            logger.error(f"{label}: {line.rstrip()}")


def run_subprocess(cmd: List[str], log_dir: Optional[Path] = None,
                   log_prefix: str = "vsphere_machine_", debug: bool = False,
                   **kwargs) -> subprocess.CompletedProcess:
    """
    Run subprocess with stdout/stderr captured to tempfiles.

    Args:
        cmd: Command to run as list of strings
        log_dir: Directory for the captured output (default: system temp dir)
        log_prefix: Prefix for the log file names
        debug: Whether to keep logs after a successful run
        **kwargs: Additional keyword arguments for subprocess.run; ``check``
            raises CalledProcessError after the output has been captured

    Returns:
        CompletedProcess with stdout/stderr captured as text

    On error, logs the last 20 lines of stdout/stderr and keeps the log files.
    """
    logger = logging.getLogger(__name__)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

    stdout_temp = tempfile.NamedTemporaryFile(mode='w+', prefix=f'{log_prefix}stdout_',
                                              suffix='.log', delete=False, dir=log_dir)
    stderr_temp = tempfile.NamedTemporaryFile(mode='w+', prefix=f'{log_prefix}stderr_',
                                              suffix='.log', delete=False, dir=log_dir)

    kwargs_copy = kwargs.copy()
    check = kwargs_copy.pop('check', False)
    kwargs_copy.pop('capture_output', None)
    kwargs_copy['stdout'] = stdout_temp
    kwargs_copy['stderr'] = stderr_temp
    kwargs_copy['text'] = True

    logger.debug(f"Running command: {' '.join(cmd)}")
    if debug:
        logger.debug(f"stdout log: {stdout_temp.name}")
        logger.debug(f"stderr log: {stderr_temp.name}")

    try:
        result = subprocess.run(cmd, **kwargs_copy)
    except OSError as e:
        logger.error(f"Command execution failed: {' '.join(cmd)}")
        logger.error(f"Exception: {e}")
        raise
    finally:
        stdout_temp.close()
        stderr_temp.close()

    with open(stdout_temp.name, 'r', encoding='utf-8', errors='replace') as f:
        captured_stdout = f.read()
    with open(stderr_temp.name, 'r', encoding='utf-8', errors='replace') as f:
        captured_stderr = f.read()

    result.stdout = captured_stdout
    result.stderr = captured_stderr

    if result.returncode != 0:
        logger.error(f"Command failed with exit code {result.returncode}: {cmd[0]}")
        logger.error(f"stdout log path: {stdout_temp.name}")
        logger.error(f"stderr log path: {stderr_temp.name}")
        _log_tail("stdout", stdout_temp.name)
        _log_tail("stderr", stderr_temp.name)
        if check:
            raise subprocess.CalledProcessError(
                result.returncode, cmd, output=captured_stdout, stderr=captured_stderr
            )
    elif not debug:
        for name in (stdout_temp.name, stderr_temp.name):
            try:
                os.unlink(name)
            except OSError:
                pass  # File already removed

    return result
