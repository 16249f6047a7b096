"""
Kernel management commands for the Temper plugin.
"""

from ..languages import normalize_language
from ..utils.notifications import notify_user


def restart_kernel_command_impl(plugin, args):
    """
    Implementation for restarting the kernel of one language.

    Args:
        plugin: The main Temper plugin instance
        args: Command arguments; the optional first one names the language
            (python by default)

    Returns:
        The restart coroutine, or None if the language is unknown
    """
    language = normalize_language(args[0]) if args else "python"
    plugin._logger.info(f"TemperRestartKernel called for {language}")

    if language not in plugin.kernel_manager.languages:
        choices = ", ".join(sorted(plugin.kernel_manager.languages))
        notify_user(plugin.nvim, f"Unknown kernel '{args[0]}'. Expected one of: {choices}", level='error')
        return None

    # New executable paths take effect on the next spawn
    plugin.refresh_settings()
    return plugin.kernel_manager.restart_kernel(language)


def stop_command_impl(plugin):
    """
    Implementation for stopping every running kernel.

    Returns:
        The cleanup coroutine
    """
    plugin._logger.info("TemperStop called")
    return plugin.kernel_manager.cleanup()
