import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Set

import nbformat

from .protocol import ExecutionResult


class CellNotFoundError(LookupError):
    """The notebook has no code cell at the requested index."""


def _normalize_text(text: str) -> str:
    return text.rstrip("\n") + "\n"


def _joined(value) -> str:
    return "".join(value) if isinstance(value, list) else (value or "")


def load_notebook(path: str) -> nbformat.NotebookNode:
    return nbformat.read(path, as_version=4)


def write_notebook_atomic(nb: nbformat.NotebookNode, path: str) -> None:
    """
    Write a notebook through a temp file in the same directory and os.replace().
    """
    target = Path(path)
    fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            nbformat.write(nb, f)
        os.replace(temp_path, target)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def find_code_cell(nb: nbformat.NotebookNode, cell_index: int) -> nbformat.NotebookNode:
    """
    Return the n-th code cell (0-based, counting code cells only).

    Raises:
        CellNotFoundError: If there is no such cell
    """
    code_cells = [cell for cell in nb.cells if cell.get("cell_type") == "code"]
    if cell_index < 0 or cell_index >= len(code_cells):
        raise CellNotFoundError(f"Code cell {cell_index} not found ({len(code_cells)} code cells in notebook)")
    return code_cells[cell_index]


class OutputMerger:
    """
    Writes execution results into the code cells of a notebook.

    Failures are logged and reported to the user but never raised: a broken
    cell index must not take the kernel manager down with it.
    """

    def __init__(
        self,
        notifier: Optional[Callable[[str, str], None]] = None,
        on_notebook_written: Optional[Callable[[str], Awaitable]] = None,
    ):
        """
        Args:
            notifier: Fire-and-forget callable taking (message, level)
            on_notebook_written: Coroutine function run in the background
                after a notebook was written, e.g. a jupytext resync
        """
        self.notifier = notifier
        self.on_notebook_written = on_notebook_written
        self._background: Set[asyncio.Task] = set()
        self._logger = logging.getLogger("temper.output_merger")

    @staticmethod
    def build_outputs(result: ExecutionResult) -> List[nbformat.NotebookNode]:
        """
        Convert an execution result to notebook outputs: stdout stream,
        stderr stream, then at most one PNG display entry.
        """
        outputs = []
        if result.stdout and result.stdout.strip():
            outputs.append(nbformat.v4.new_output("stream", name="stdout", text=_normalize_text(result.stdout)))
        if result.stderr and result.stderr.strip():
            outputs.append(nbformat.v4.new_output("stream", name="stderr", text=_normalize_text(result.stderr)))
        if result.image_data:
            outputs.append(
                nbformat.v4.new_output("display_data", data={"image/png": result.image_data}, metadata={})
            )
        return outputs

    async def merge(self, notebook_path: str, cell_index: int, result: ExecutionResult) -> bool:
        """
        Replace the outputs of a code cell with an execution result.

        Args:
            notebook_path: Path of the .ipynb file
            cell_index: 0-based index among the notebook's code cells
            result: The result to store

        Returns:
            bool: True if the notebook was updated
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._merge_sync, notebook_path, cell_index, result)
        except Exception as e:
            self._report_failure(f"Error updating notebook {os.path.basename(notebook_path)}", e)
            return False

        self._logger.info(f"Stored result in code cell {cell_index} of {notebook_path}")
        self._schedule_written(notebook_path)
        return True

    def _merge_sync(self, notebook_path: str, cell_index: int, result: ExecutionResult):
        nb = load_notebook(notebook_path)
        cell = find_code_cell(nb, cell_index)

        cell.outputs = self.build_outputs(result)
        cell.execution_count = (cell.get("execution_count") or 0) + 1

        jupyter_meta = cell.setdefault("metadata", {}).get("jupyter")
        if isinstance(jupyter_meta, dict):
            jupyter_meta.pop("is_executing", None)
            if not jupyter_meta:
                del cell.metadata["jupyter"]

        write_notebook_atomic(nb, notebook_path)

    async def clear_outputs(self, notebook_path: str, cell_index: int) -> bool:
        """Remove every output of a code cell and reset its execution count."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._clear_sync, notebook_path, cell_index)
        except Exception as e:
            self._report_failure(f"Error clearing output in {os.path.basename(notebook_path)}", e)
            return False

        self._schedule_written(notebook_path)
        return True

    @staticmethod
    def _clear_sync(notebook_path: str, cell_index: int):
        nb = load_notebook(notebook_path)
        cell = find_code_cell(nb, cell_index)
        cell.outputs = []
        cell.execution_count = None
        write_notebook_atomic(nb, notebook_path)

    def render_outputs(self, notebook_path: str, cell_index: int) -> List[str]:
        """
        Text lines describing the stored outputs of a code cell.

        Returns:
            list: Lines of text; empty if the cell has no output or cannot be read
        """
        try:
            cell = find_code_cell(load_notebook(notebook_path), cell_index)
        except Exception as e:
            self._logger.warning(f"Cannot read outputs of cell {cell_index} in {notebook_path}: {e}")
            return []

        lines: List[str] = []
        for out in cell.get("outputs", []):
            output_type = out.get("output_type")
            if output_type == "stream":
                lines.extend(_joined(out.get("text")).splitlines())
            elif output_type == "execute_result":
                lines.extend(_joined(out.get("data", {}).get("text/plain")).splitlines())
            elif output_type == "display_data":
                data = out.get("data", {})
                if "image/png" in data:
                    lines.append("[image/png]")
                elif "text/plain" in data:
                    lines.extend(_joined(data["text/plain"]).splitlines())
            elif output_type == "error":
                lines.append(f"{out.get('ename', 'Error')}: {out.get('evalue', '')}")
        return lines

    def _report_failure(self, message: str, error: Exception):
        self._logger.error(f"{message}: {error}")
        if self.notifier is not None:
            try:
                self.notifier(f"{message}: {error}", "error")
            except Exception as e:
                self._logger.error(f"Failed to notify user: {e}")

    def _schedule_written(self, notebook_path: str):
        if self.on_notebook_written is None:
            return
        task = asyncio.create_task(self.on_notebook_written(notebook_path))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task):
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(f"Post-write hook failed: {task.exception()}")
