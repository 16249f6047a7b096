"""
Code execution commands for the Temper plugin.

This module contains command implementation functions for:
- Running the code block under the cursor
- Running every code block of a note
- Clearing and showing the stored output of a block
- Syncing a note with its notebook
- Creating the notebook of a note, or the note of a notebook

The *_impl functions read everything they need from Neovim synchronously and
return the coroutine that does the rest, or None when there is nothing to do.
Decorators are in the main plugin class.
"""
import os

from ..core.block_parser import extract_all_blocks, find_block_at
from ..errors import KernelError
from ..utils.notifications import notify_user


def _prepare_buffer_data(plugin):
    """Helper to get buffer data synchronously."""
    try:
        path, current_line, lines = plugin.ui_manager.get_buffer_snapshot()
        plugin._logger.info(f"Got buffer data: {path}, line {current_line}, {len(lines)} lines")
        return path, current_line, lines
    except Exception as e:
        plugin._logger.error(f"Error getting buffer data: {e}")
        notify_user(plugin.nvim, f"Error accessing buffer: {e}", level='error')
        return None, None, None


def _require_note(plugin, path):
    if not path:
        notify_user(plugin.nvim, "Save the note to a file first", level='error')
        return False
    return True


def _require_paired_note(plugin, path):
    if not _require_note(plugin, path):
        return False
    if not plugin.document_sync.is_paired(path):
        notify_user(
            plugin.nvim,
            f"{os.path.basename(path)} has no paired notebook. Run :TemperCreateNotebook first.",
            level='error',
        )
        return False
    return True


def _require_execution_enabled(plugin, path):
    settings = plugin.refresh_settings()
    if not settings.enable_code_blocks:
        notify_user(plugin.nvim, "Code block execution is disabled (g:temper_nvim_enable_code_blocks)", level='error')
        return False
    return _require_paired_note(plugin, path)


def _block_under_cursor(plugin):
    path, current_line, lines = _prepare_buffer_data(plugin)
    if lines is None:
        return None, None
    block = find_block_at(lines, current_line)
    if block is None:
        notify_user(plugin.nvim, "Cursor is not inside a python or julia code block")
    return path, block


async def execute_blocks(plugin, document_path, blocks):
    """
    Run blocks one after the other and store each result in the notebook.

    Stops at the first block whose execution fails; the kernel manager has
    already told the user why.

    Args:
        plugin: The main Temper plugin instance
        document_path: Path of the note the blocks belong to
        blocks: CodeBlock objects to run, in order

    Returns:
        int: Number of blocks whose result was stored
    """
    notebook_path = plugin.document_sync.paired_notebook_path(document_path)
    stored = 0
    for block in blocks:
        try:
            result = await plugin.kernel_manager.execute(block.code, block.language, document_path)
        except KernelError as e:
            plugin._logger.info(f"Stopped at block {block.cell_index}: {e}")
            break
        if await plugin.output_merger.merge(notebook_path, block.cell_index, result):
            stored += 1
    return stored


def run_block_impl(plugin):
    """
    Run the code block under the cursor and store its output in the notebook.
    """
    plugin._logger.info("TemperRunBlock called")

    path, block = _block_under_cursor(plugin)
    if block is None or not _require_execution_enabled(plugin, path):
        return None
    if not block.code.strip():
        notify_user(plugin.nvim, "No code found in current block")
        return None

    notify_user(
        plugin.nvim,
        f"Temper: Running {block.language} block {block.cell_index + 1} (lines {block.start_line}-{block.end_line})",
    )
    return execute_blocks(plugin, path, [block])


def run_all_impl(plugin):
    """
    Run every python and julia block of the note, top to bottom.
    """
    plugin._logger.info("TemperRunAll called")

    path, _, lines = _prepare_buffer_data(plugin)
    if lines is None or not _require_execution_enabled(plugin, path):
        return None

    blocks = [block for block in extract_all_blocks(lines) if block.code.strip()]
    if not blocks:
        notify_user(plugin.nvim, "No code blocks found in note")
        return None

    plugin._logger.debug(f"Running {len(blocks)} blocks of {path}")
    notify_user(plugin.nvim, f"Temper: Running all {len(blocks)} code blocks")
    return execute_blocks(plugin, path, blocks)


def clear_output_impl(plugin):
    """
    Remove the stored output of the block under the cursor.
    """
    plugin._logger.info("TemperClearOutput called")

    path, block = _block_under_cursor(plugin)
    if block is None or not _require_paired_note(plugin, path):
        return None
    return plugin.output_merger.clear_outputs(plugin.document_sync.paired_notebook_path(path), block.cell_index)


def show_output_impl(plugin):
    """
    Show the stored output of the block under the cursor in a scratch window.
    """
    plugin._logger.info("TemperShowOutput called")

    path, block = _block_under_cursor(plugin)
    if block is None or not _require_paired_note(plugin, path):
        return

    lines = plugin.output_merger.render_outputs(plugin.document_sync.paired_notebook_path(path), block.cell_index)
    try:
        plugin.ui_manager.show_output(lines)
    except Exception as e:
        plugin._logger.error(f"Error showing output: {e}")
        notify_user(plugin.nvim, f"Error showing output: {e}", level='error')


async def _sync_and_report(plugin, path):
    if await plugin.document_sync.sync_now(path):
        plugin.notifier(f"Synced {os.path.basename(path)}")
    else:
        plugin.notifier(f"Sync of {os.path.basename(path)} failed, see the log", level='error')


def sync_impl(plugin):
    """
    Sync the current note with its notebook right away.
    """
    plugin._logger.info("TemperSync called")

    path, _, lines = _prepare_buffer_data(plugin)
    if lines is None or not _require_paired_note(plugin, path):
        return None
    plugin.refresh_settings()
    return _sync_and_report(plugin, path)


def create_notebook_impl(plugin):
    """
    Create the notebook for the current note and pair them.
    """
    plugin._logger.info("TemperCreateNotebook called")

    path, _, lines = _prepare_buffer_data(plugin)
    if lines is None or not _require_note(plugin, path):
        return None
    plugin.refresh_settings()
    return plugin.document_sync.create_notebook(path)


async def _create_note_and_open(plugin, notebook_path):
    md_path = await plugin.document_sync.create_note(notebook_path)
    if md_path is not None:
        plugin.nvim.async_call(plugin.ui_manager.open_file, md_path)
    return md_path


def create_note_impl(plugin, args):
    """
    Create a note for a notebook and pair them, then open the note.

    The notebook is the path given as argument, or the notebook that the
    current buffer's file name points at.
    """
    plugin._logger.info(f"TemperCreateNote called with args: {args}")

    if args:
        notebook_path = os.path.abspath(os.path.expanduser(args[0]))
    else:
        path, _, lines = _prepare_buffer_data(plugin)
        if lines is None:
            return None
        if not path:
            notify_user(plugin.nvim, "Usage: :TemperCreateNote {notebook.ipynb}", level='error')
            return None
        notebook_path = plugin.document_sync.paired_notebook_path(path)

    plugin.refresh_settings()
    return _create_note_and_open(plugin, notebook_path)
