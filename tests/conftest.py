"""
Pytest configuration and shared fixtures for Temper tests.
"""
import importlib.util
import pytest
import shutil
import sys
from pathlib import Path

# Add the plugin to Python path
plugin_path = Path(__file__).parent.parent / 'rplugin' / 'python3'
sys.path.insert(0, str(plugin_path))


@pytest.fixture(scope="session")
def plugin_dir():
    """Path to the plugin directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def python_settings():
    """Settings that run every kernel with the interpreter running the tests."""
    from temper.core.config import Settings
    return Settings(python_interpreter=sys.executable, julia_executable="julia")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "subprocess: mark test as spawning real interpreter processes"
    )
    config.addinivalue_line(
        "markers", "requires_julia: mark test as requiring a julia executable"
    )
    config.addinivalue_line(
        "markers", "requires_matplotlib: mark test as requiring matplotlib in the test interpreter"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests whose external requirements are missing."""
    has_julia = shutil.which("julia") is not None
    has_matplotlib = importlib.util.find_spec("matplotlib") is not None
    for item in items:
        if item.get_closest_marker('requires_julia') and not has_julia:
            item.add_marker(pytest.mark.skip(reason="julia not available"))
        if item.get_closest_marker('requires_matplotlib') and not has_matplotlib:
            item.add_marker(pytest.mark.skip(reason="matplotlib not available"))


def pytest_report_header(config):
    """Add information about available dependencies to test report header."""
    deps = []

    try:
        import pynvim
        deps.append(f"pynvim-{pynvim.__version__}")
    except ImportError:
        deps.append("pynvim-MISSING")

    try:
        import nbformat
        deps.append(f"nbformat-{nbformat.__version__}")
    except ImportError:
        deps.append("nbformat-MISSING")

    deps.append(f"julia-{'found' if shutil.which('julia') else 'MISSING'}")

    return f"dependencies: {', '.join(deps)}"
