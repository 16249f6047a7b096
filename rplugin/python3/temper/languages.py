"""
Registry of the interpreter languages Temper can run.

A LanguageSpec describes how to launch the interpreter loop for one language
and how to recognize that it finished booting.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List

DRIVERS_DIR = Path(__file__).parent / "drivers"
PYTHON_DRIVER = DRIVERS_DIR / "python_loop.py"
JULIA_DRIVER = DRIVERS_DIR / "julia_loop.jl"


@dataclass(frozen=True)
class LanguageSpec:
    """Static description of one supported interpreter language."""

    name: str
    display_name: str
    ready_marker: str
    ready_timeout: float
    build_command: Callable[[str], List[str]]
    env: Dict[str, str] = field(default_factory=dict)


def _python_command(executable: str) -> List[str]:
    return [executable, "-u", str(PYTHON_DRIVER)]


def _julia_command(executable: str) -> List[str]:
    return [executable, "--startup-file=no", "--color=no", str(JULIA_DRIVER)]


PYTHON = LanguageSpec(
    name="python",
    display_name="Python",
    ready_marker="PYTHON_READY",
    ready_timeout=10.0,
    build_command=_python_command,
    env={"PYTHONIOENCODING": "utf-8", "PYTHONUNBUFFERED": "1"},
)

JULIA = LanguageSpec(
    name="julia",
    display_name="Julia",
    ready_marker="JULIA_READY",
    ready_timeout=15.0,
    build_command=_julia_command,
)

DEFAULT_LANGUAGES: Dict[str, LanguageSpec] = {spec.name: spec for spec in (PYTHON, JULIA)}


def normalize_language(language: str) -> str:
    """Map a fence tag or user argument onto a registry key ('py' -> 'python')."""
    tag = (language or "python").strip().lower()
    aliases = {"py": "python", "python3": "python", "jl": "julia"}
    return aliases.get(tag, tag)
