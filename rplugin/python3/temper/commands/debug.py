"""
Debug and status commands for the Temper plugin.

This module contains command implementation functions for:
- Kernel status information
- Debug diagnostics
"""

import asyncio
import shutil


def status_command_impl(plugin):
    """
    Implementation for showing the state of every kernel.

    Args:
        plugin: The main Temper plugin instance
    """
    try:
        kernels = plugin.kernel_manager.list_kernels()
        settings = plugin.settings

        status_msg = f"""Temper Status:
  Code blocks: {'enabled' if settings.enable_code_blocks else 'disabled'}
  Auto sync: {'on' if settings.auto_sync else 'off'}
  Kernels: {len(kernels)} created
"""
        for info in kernels:
            pid = info['pid'] if info['pid'] is not None else '-'
            status_msg += f"  {info['display_name']}: {info['state']} (pid {pid}), {info['pending']} pending\n"
            if info['document']:
                status_msg += f"    note: {info['document']}\n"

        plugin.nvim.out_write(status_msg)

    except Exception as e:
        plugin._logger.error(f"Error in TemperStatus: {e}")
        plugin.nvim.err_write(f"Status error: {e}\n")


def debug_command_impl(plugin):
    """
    Implementation for debug command to test plugin functionality and show diagnostics.

    Args:
        plugin: The main Temper plugin instance
    """
    try:
        plugin._logger.info("TemperDebug called")
        plugin.nvim.out_write("=== Temper Debug Info ===\n")
        plugin.nvim.out_write("✓ Plugin loaded and responding\n")

        try:
            path, current_line, _ = plugin.ui_manager.get_buffer_snapshot()
            plugin.nvim.out_write(f"✓ Buffer access: {path or '[No Name]'}, line {current_line}\n")
            if path:
                paired = plugin.document_sync.is_paired(path)
                mark = "✓" if paired else "✗"
                plugin.nvim.out_write(f"{mark} Paired notebook: {plugin.document_sync.paired_notebook_path(path)}\n")
        except Exception as e:
            plugin.nvim.out_write(f"✗ Buffer access failed: {e}\n")

        try:
            import nbformat
            plugin.nvim.out_write(f"✓ nbformat {nbformat.__version__} available\n")
        except ImportError:
            plugin.nvim.out_write("✗ nbformat not available\n")

        settings = plugin.refresh_settings()
        for label, executable in (("Python", settings.python_interpreter), ("Julia", settings.julia_executable)):
            found = shutil.which(executable)
            if found:
                plugin.nvim.out_write(f"✓ {label} interpreter: {found}\n")
            else:
                plugin.nvim.out_write(f"✗ {label} interpreter not found: {executable}\n")

        try:
            loop = asyncio.get_running_loop()
            plugin.nvim.out_write(f"✓ Event loop: {type(loop).__name__}\n")
        except RuntimeError:
            plugin.nvim.out_write("✗ No running event loop\n")

        plugin.nvim.out_write("=== End Debug Info ===\n")

    except Exception as e:
        plugin._logger.error(f"Error in TemperDebug: {e}")
        plugin.nvim.err_write(f"Debug error: {e}\n")
