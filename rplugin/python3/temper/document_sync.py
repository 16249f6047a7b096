import asyncio
import json
import logging
import os
import time
from typing import Callable, Optional, Tuple

from .core.config import Settings

PYTHON_KERNELSPEC = {"kernelspec": {"display_name": "Python 3", "language": "python", "name": "python3"}}
JULIA_KERNELSPEC = {"kernelspec": {"display_name": "Julia 1.12", "language": "julia", "name": "julia-1.12"}}


class DocumentSync:
    """
    Keeps a Markdown note and its paired notebook in step through jupytext.

    jupytext is run as `<python> -m jupytext` with the configured Python
    interpreter. Sync requests are debounced, and after a sync has run further
    requests are ignored for a short dead time so that the file rewrites made
    by jupytext itself do not trigger another round.
    """

    DEBOUNCE_DELAY = 0.5
    SYNC_DEADTIME = 1.5

    def __init__(
        self,
        settings_provider: Callable[[], Settings],
        notifier: Optional[Callable[[str, str], None]] = None,
        on_synced: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            settings_provider: Returns the current settings
            notifier: Fire-and-forget callable taking (message, level)
            on_synced: Called with the note path after a successful sync,
                e.g. to make Neovim reload the rewritten buffer
        """
        self.settings_provider = settings_provider
        self.notifier = notifier
        self.on_synced = on_synced
        self._last_sync = 0.0
        self._debouncing = False
        self._logger = logging.getLogger("temper.document_sync")

    @staticmethod
    def paired_notebook_path(md_path: str) -> str:
        """Path of the notebook paired with a note: same name, .ipynb suffix."""
        root, _ = os.path.splitext(os.path.abspath(md_path))
        return root + ".ipynb"

    @staticmethod
    def note_path(path: str) -> str:
        root, _ = os.path.splitext(os.path.abspath(path))
        return root + ".md"

    def is_paired(self, md_path: str) -> bool:
        return os.path.isfile(self.paired_notebook_path(md_path))

    def is_sync_blocked(self) -> bool:
        in_deadtime = time.monotonic() - self._last_sync < self.SYNC_DEADTIME
        return in_deadtime or self._debouncing

    def _notify(self, message: str, level: str = "info"):
        if self.notifier is None:
            return
        try:
            self.notifier(message, level)
        except Exception as e:
            self._logger.error(f"Failed to notify user: {e}")

    async def sync(self, path: str, verbose: bool = False) -> bool:
        """
        Debounced sync of a note with its notebook.

        Args:
            path: The note or the notebook; either side of the pair works
            verbose: Tell the user that a sync is underway

        Returns:
            bool: True if jupytext ran successfully, False if the request was
                  dropped or failed
        """
        if self.is_sync_blocked():
            self._logger.debug(f"Sync of {path} skipped, another sync is pending or just ran")
            return False

        self._debouncing = True
        if verbose:
            self._notify("Syncing...")
        try:
            await asyncio.sleep(self.DEBOUNCE_DELAY)
        finally:
            self._debouncing = False

        if self.is_sync_blocked():
            return False
        return await self.sync_now(path)

    async def sync_now(self, path: str) -> bool:
        """
        Run jupytext for the pair immediately, bypassing the debounce.

        A notebook path always syncs from the notebook with `--sync`, so the
        outputs just written to it reach the note. A note path does the same
        when sync is bidirectional; otherwise the notebook is rebuilt from the
        note with `--update`, which keeps the stored outputs.
        """
        md_path = self.note_path(path)
        if not self.is_paired(md_path):
            self._logger.debug(f"{md_path} has no paired notebook, nothing to sync")
            return False

        settings = self.settings_provider()
        from_notebook = path.lower().endswith(".ipynb")
        if settings.bidirectional_sync or from_notebook:
            args = ["--sync", self.paired_notebook_path(md_path)]
        else:
            args = ["--to", "ipynb", "--update", md_path]

        self._last_sync = time.monotonic()
        returncode, _, stderr = await self._run_jupytext(*args)
        if returncode != 0:
            self._logger.error(f"Failed to sync {md_path}: {stderr.strip()}")
            self._last_sync = 0.0
            return False

        self._logger.info(f"Synced {md_path}")
        if self.on_synced is not None:
            try:
                self.on_synced(md_path)
            except Exception as e:
                self._logger.error(f"Post-sync hook failed: {e}")
        return True

    async def create_notebook(self, md_path: str) -> bool:
        """
        Create the notebook for a note and pair the two.

        The kernelspec is Julia when the note contains a julia code fence,
        Python otherwise.

        Returns:
            bool: True if the notebook was created and paired
        """
        md_path = os.path.abspath(md_path)
        if self.is_paired(md_path):
            self._notify("Notebook is already paired with this note.")
            return False

        try:
            with open(md_path, "r", encoding="utf-8") as f:
                is_julia = "```julia" in f.read()
        except OSError as e:
            self._logger.error(f"Cannot read {md_path}: {e}")
            self._notify(f"Cannot read {os.path.basename(md_path)}: {e}", level="error")
            return False

        returncode, _, stderr = await self._run_jupytext("--to", "notebook", md_path)
        if returncode != 0:
            self._logger.error(f"jupytext --to notebook failed for {md_path}: {stderr.strip()}")
            self._notify(f"Failed to create notebook: {stderr.strip()}", level="error")
            return False

        kernelspec = JULIA_KERNELSPEC if is_julia else PYTHON_KERNELSPEC
        returncode, _, stderr = await self._run_jupytext(
            self.paired_notebook_path(md_path),
            "--set-formats",
            "ipynb,md",
            "--update-metadata",
            json.dumps(kernelspec),
        )
        if returncode != 0:
            self._logger.error(f"Pairing failed for {md_path}: {stderr.strip()}")
            self._notify(f"Failed to pair notebook and note: {stderr.strip()}", level="error")
            return False

        self._notify(f"Notebook paired as {'Julia' if is_julia else 'Python'}")
        return True

    async def create_note(self, notebook_path: str) -> Optional[str]:
        """
        Create the Markdown note for an existing notebook and pair the two.

        Returns:
            Optional[str]: Path of the new note, or None if nothing was created
        """
        notebook_path = os.path.abspath(notebook_path)
        md_path = self.note_path(notebook_path)
        if not os.path.isfile(notebook_path):
            self._notify(f"Notebook not found: {notebook_path}", level="error")
            return None
        if os.path.exists(md_path):
            self._notify("Note is already paired with this notebook.")
            return None

        returncode, _, stderr = await self._run_jupytext("--to", "markdown", notebook_path)
        if returncode != 0:
            self._logger.error(f"jupytext --to markdown failed for {notebook_path}: {stderr.strip()}")
            self._notify(f"Failed to convert notebook: {stderr.strip()}", level="error")
            return None

        returncode, _, stderr = await self._run_jupytext("--set-formats", "ipynb,md", notebook_path)
        if returncode != 0:
            self._logger.error(f"Pairing failed for {notebook_path}: {stderr.strip()}")
            self._notify(f"Failed to pair notebook and note: {stderr.strip()}", level="error")
            return None

        self._notify(f"Note created and paired: {md_path}")
        return md_path

    async def _run_jupytext(self, *args: str) -> Tuple[int, str, str]:
        interpreter = self.settings_provider().python_interpreter
        command = [interpreter, "-m", "jupytext", *args]
        self._logger.debug(f"Running {command}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return -1, "", f"could not run {interpreter}: {e}"

        stdout, stderr = await process.communicate()
        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
