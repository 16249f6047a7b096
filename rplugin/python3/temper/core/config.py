"""
Configuration management utilities for the Temper plugin.

This module contains functions for retrieving plugin configuration from
Neovim global variables with appropriate defaults and error handling.
"""
import logging
from dataclasses import dataclass
from typing import Any

DEFAULT_PYTHON_INTERPRETER = "python3"
DEFAULT_JULIA_EXECUTABLE = "julia"
DEFAULT_PYTHON_READY_TIMEOUT = 10.0
DEFAULT_JULIA_READY_TIMEOUT = 15.0


@dataclass(frozen=True)
class Settings:
    """Snapshot of the user's configuration."""

    python_interpreter: str = DEFAULT_PYTHON_INTERPRETER
    julia_executable: str = DEFAULT_JULIA_EXECUTABLE
    enable_code_blocks: bool = True
    auto_sync: bool = True
    bidirectional_sync: bool = True
    python_ready_timeout: float = DEFAULT_PYTHON_READY_TIMEOUT
    julia_ready_timeout: float = DEFAULT_JULIA_READY_TIMEOUT


def _get_var(nvim: Any, logger: logging.Logger, name: str, default: Any) -> Any:
    try:
        value = nvim.vars.get(name, default)
    except Exception as e:
        logger.warning(f"Error getting {name} from Neovim variable: {e}")
        return default
    return default if value is None else value


def get_python_interpreter(nvim: Any, logger: logging.Logger) -> str:
    """
    Get the Python interpreter used for python code blocks.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        logger: Logger instance for error reporting

    Returns:
        str: Interpreter path, defaults to 'python3'. A blank value also
             falls back to the default.
    """
    value = _get_var(nvim, logger, "temper_nvim_python_interpreter", DEFAULT_PYTHON_INTERPRETER)
    return str(value).strip() or DEFAULT_PYTHON_INTERPRETER


def get_julia_executable(nvim: Any, logger: logging.Logger) -> str:
    """
    Get the julia executable used for julia code blocks, defaults to 'julia'.
    """
    value = _get_var(nvim, logger, "temper_nvim_julia_executable", DEFAULT_JULIA_EXECUTABLE)
    return str(value).strip() or DEFAULT_JULIA_EXECUTABLE


def get_enable_code_blocks(nvim: Any, logger: logging.Logger) -> bool:
    """
    Whether code blocks may be executed at all. Enabled by default.
    """
    return bool(_get_var(nvim, logger, "temper_nvim_enable_code_blocks", True))


def get_auto_sync(nvim: Any, logger: logging.Logger) -> bool:
    """
    Whether the paired notebook is re-synced with jupytext after every write.
    Enabled by default.
    """
    return bool(_get_var(nvim, logger, "temper_nvim_auto_sync", True))


def get_bidirectional_sync(nvim: Any, logger: logging.Logger) -> bool:
    """
    Whether syncs run `jupytext --sync` (both directions) rather than only
    regenerating the notebook from the note. Enabled by default.
    """
    return bool(_get_var(nvim, logger, "temper_nvim_bidirectional_sync", True))


def _get_timeout(nvim: Any, logger: logging.Logger, name: str, default: float) -> float:
    value = _get_var(nvim, logger, name, default)
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value for {name}: {value!r}, using {default}")
        return default
    if timeout <= 0:
        logger.warning(f"Non-positive value for {name}: {value!r}, using {default}")
        return default
    return timeout


def get_python_ready_timeout(nvim: Any, logger: logging.Logger) -> float:
    """Seconds to wait for the Python kernel to boot, defaults to 10."""
    return _get_timeout(nvim, logger, "temper_nvim_python_ready_timeout", DEFAULT_PYTHON_READY_TIMEOUT)


def get_julia_ready_timeout(nvim: Any, logger: logging.Logger) -> float:
    """Seconds to wait for the Julia kernel to boot, defaults to 15."""
    return _get_timeout(nvim, logger, "temper_nvim_julia_ready_timeout", DEFAULT_JULIA_READY_TIMEOUT)


def load_settings(nvim: Any, logger: logging.Logger) -> Settings:
    """
    Read every Temper setting into an immutable snapshot.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        logger: Logger instance for error reporting

    Returns:
        Settings: The current configuration
    """
    return Settings(
        python_interpreter=get_python_interpreter(nvim, logger),
        julia_executable=get_julia_executable(nvim, logger),
        enable_code_blocks=get_enable_code_blocks(nvim, logger),
        auto_sync=get_auto_sync(nvim, logger),
        bidirectional_sync=get_bidirectional_sync(nvim, logger),
        python_ready_timeout=get_python_ready_timeout(nvim, logger),
        julia_ready_timeout=get_julia_ready_timeout(nvim, logger),
    )
