import asyncio
import logging
import os
logging.basicConfig(filename=os.environ.get("TEMPER_LOG_FILE", "/tmp/temper.log"), level=logging.DEBUG)

import pynvim

from .kernel_manager import KernelManager
from .output_merger import OutputMerger
from .document_sync import DocumentSync
from .ui_manager import NvimUIManager

# Import utilities
from .utils.notifications import Notifier, notify_user

# Import core modules
from .core.config import load_settings
from .core.async_executor import AsyncExecutor


@pynvim.plugin
class Temper:
    """
    Main Temper plugin class.

    Runs the python and julia code blocks of a Markdown note in persistent
    interpreter processes, one per language, and stores each block's output
    in the matching code cell of the note's paired Jupyter notebook.
    """

    def __init__(self, nvim):
        """
        Initialize the plugin with all required components.

        Args:
            nvim: The pynvim.Nvim instance for interacting with Neovim.
        """
        self.nvim = nvim

        # Set up logging
        self._logger = logging.getLogger("temper.main")

        self.settings = load_settings(nvim, self._logger)
        self.notifier = Notifier(nvim, self._logger)
        self.ui_manager = NvimUIManager(nvim)

        # Components read settings through the snapshot, never through nvim
        self.kernel_manager = KernelManager(lambda: self.settings, self.notifier)
        self.document_sync = DocumentSync(lambda: self.settings, self.notifier, on_synced=self._on_note_synced)
        self.output_merger = OutputMerger(self.notifier, on_notebook_written=self._after_notebook_write)

        self.async_executor = AsyncExecutor(nvim, self._logger)

        self._logger.info("Temper plugin initialized")

    def refresh_settings(self):
        """Re-read the g:temper_nvim_* variables. Call from sync handlers only."""
        self.settings = load_settings(self.nvim, self._logger)
        return self.settings

    async def _after_notebook_write(self, notebook_path):
        if self.settings.auto_sync:
            await self.document_sync.sync(notebook_path)

    def _on_note_synced(self, md_path):
        self._logger.debug(f"Reloading buffers after sync of {md_path}")
        self.nvim.async_call(self.ui_manager.reload_buffers)

    @pynvim.autocmd("VimLeave", sync=True)
    def on_vim_leave(self):
        """
        Handle Vim exit - fires off kernel cleanup and lets Neovim exit immediately.
        """
        self._logger.info("Vim leaving - scheduling kernel cleanup.")
        try:
            loop = asyncio.get_running_loop()
            asyncio.run_coroutine_threadsafe(self.kernel_manager.cleanup(), loop)
            self._logger.info("Cleanup task scheduled. Neovim can now exit.")
        except Exception as e:
            self._logger.error(f"Error scheduling VimLeave cleanup: {e}")

    @pynvim.autocmd("BufWritePost", pattern="*.md", eval='expand("<afile>:p")', sync=True)
    def on_note_written(self, path):
        """
        Sync a paired note with its notebook after it was saved.
        """
        settings = self.refresh_settings()
        if not settings.auto_sync or not self.document_sync.is_paired(path):
            return
        return self.async_executor.execute_sync(self.document_sync.sync(path), "note sync")

    # Debug Commands
    @pynvim.command('TemperStatus', sync=True)
    def status_command(self):
        """
        Show the state of the Temper kernels.
        """
        from .commands.debug import status_command_impl
        return status_command_impl(self)

    @pynvim.command('TemperDebug', sync=True)
    def debug_command(self):
        """
        Debug command to test plugin functionality and show diagnostics.
        """
        from .commands.debug import debug_command_impl
        return debug_command_impl(self)

    # Kernel Management Commands
    @pynvim.command('TemperRestartKernel', nargs='?', sync=True)
    def restart_kernel_command(self, args):
        """
        Restart the python (default) or julia kernel, clearing all its state.
        """
        from .commands.kernel_mgmt import restart_kernel_command_impl
        return self.async_executor.execute_sync(restart_kernel_command_impl(self, args), "kernel restart")

    @pynvim.command('TemperStop', sync=True)
    def stop_command(self):
        """
        Stop every running kernel.
        """
        from .commands.kernel_mgmt import stop_command_impl
        notify_user(self.nvim, "Stopping Temper kernels...")
        return self.async_executor.execute_sync(stop_command_impl(self), "kernel shutdown")

    # ================================================================
    # Execution Commands (wrappers around implementation functions)
    # ================================================================

    @pynvim.command('TemperRunBlock', sync=True)
    def run_block(self):
        """
        Run the code block under the cursor.
        """
        from .commands.execution import run_block_impl
        return self.async_executor.execute_sync(run_block_impl(self), "block execution")

    @pynvim.command('TemperRunAll', sync=True)
    def run_all(self):
        """
        Run every python and julia block of the note.
        """
        from .commands.execution import run_all_impl
        return self.async_executor.execute_sync(run_all_impl(self), "all blocks execution")

    @pynvim.command('TemperClearOutput', sync=True)
    def clear_output(self):
        """
        Clear the stored output of the block under the cursor.
        """
        from .commands.execution import clear_output_impl
        return self.async_executor.execute_sync(clear_output_impl(self), "output clearing")

    @pynvim.command('TemperShowOutput', sync=True)
    def show_output(self):
        """
        Show the stored output of the block under the cursor.
        """
        from .commands.execution import show_output_impl
        return show_output_impl(self)

    @pynvim.command('TemperSync', sync=True)
    def sync_command(self):
        """
        Sync the note with its paired notebook now.
        """
        from .commands.execution import sync_impl
        return self.async_executor.execute_sync(sync_impl(self), "note sync")

    @pynvim.command('TemperCreateNotebook', sync=True)
    def create_notebook_command(self):
        """
        Create a notebook for the note and pair the two with jupytext.
        """
        from .commands.execution import create_notebook_impl
        return self.async_executor.execute_sync(create_notebook_impl(self), "notebook creation")

    @pynvim.command('TemperCreateNote', nargs='?', complete='file', sync=True)
    def create_note_command(self, args):
        """
        Create a note for a notebook and pair the two with jupytext.
        """
        from .commands.execution import create_note_impl
        return self.async_executor.execute_sync(create_note_impl(self, args), "note creation")
