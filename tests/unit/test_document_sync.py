"""
Unit tests for note/notebook pairing and jupytext syncing.
"""
import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, Mock

import nbformat
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "rplugin", "python3"))

from temper.core.config import Settings
from temper.document_sync import JULIA_KERNELSPEC, PYTHON_KERNELSPEC, DocumentSync
from temper.output_merger import OutputMerger
from temper.protocol import ExecutionResult


def make_sync(settings=None, notifier=None, on_synced=None, returncode=0):
    settings = settings or Settings(python_interpreter="python3")
    sync = DocumentSync(lambda: settings, notifier or Mock(), on_synced=on_synced)
    sync.DEBOUNCE_DELAY = 0.01
    sync._run_jupytext = AsyncMock(return_value=(returncode, "", "" if returncode == 0 else "boom"))
    return sync


@pytest.fixture
def paired_note(tmp_path):
    note = tmp_path / "note.md"
    note.write_text("# Note\n\n```python\nprint(1)\n```\n", encoding="utf-8")
    (tmp_path / "note.ipynb").write_text("{}", encoding="utf-8")
    return str(note)


class TestPairing:
    """Test cases for locating the paired notebook."""

    def test_paired_notebook_path(self, tmp_path):
        assert DocumentSync.paired_notebook_path(str(tmp_path / "a.md")) == str(tmp_path / "a.ipynb")

    def test_note_path_from_notebook(self, tmp_path):
        assert DocumentSync.note_path(str(tmp_path / "a.ipynb")) == str(tmp_path / "a.md")

    def test_is_paired(self, paired_note, tmp_path):
        sync = make_sync()
        assert sync.is_paired(paired_note) is True
        assert sync.is_paired(str(tmp_path / "lonely.md")) is False


class TestSync:
    """Test cases for debounced syncing."""

    @pytest.mark.asyncio
    async def test_sync_runs_jupytext(self, paired_note):
        on_synced = Mock()
        sync = make_sync(on_synced=on_synced)

        assert await sync.sync(paired_note) is True

        sync._run_jupytext.assert_awaited_once_with("--sync", DocumentSync.paired_notebook_path(paired_note))
        on_synced.assert_called_once_with(paired_note)

    @pytest.mark.asyncio
    async def test_sync_from_notebook_side(self, paired_note):
        sync = make_sync()
        assert await sync.sync(DocumentSync.paired_notebook_path(paired_note)) is True

    @pytest.mark.asyncio
    async def test_one_directional_sync(self, paired_note):
        sync = make_sync(Settings(bidirectional_sync=False))
        await sync.sync_now(paired_note)
        sync._run_jupytext.assert_awaited_once_with("--to", "ipynb", "--update", paired_note)

    @pytest.mark.asyncio
    async def test_notebook_side_always_syncs_from_notebook(self, paired_note):
        sync = make_sync(Settings(bidirectional_sync=False))
        notebook = DocumentSync.paired_notebook_path(paired_note)
        await sync.sync_now(notebook)
        sync._run_jupytext.assert_awaited_once_with("--sync", notebook)

    @pytest.mark.asyncio
    async def test_unpaired_note_is_not_synced(self, tmp_path):
        sync = make_sync()
        assert await sync.sync(str(tmp_path / "lonely.md")) is False
        sync._run_jupytext.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requests_during_debounce_are_dropped(self, paired_note):
        sync = make_sync()
        first = asyncio.create_task(sync.sync(paired_note))
        await asyncio.sleep(0)
        assert sync.is_sync_blocked() is True
        assert await sync.sync(paired_note) is False
        assert await first is True
        assert sync._run_jupytext.await_count == 1

    @pytest.mark.asyncio
    async def test_deadtime_after_sync(self, paired_note):
        sync = make_sync()
        assert await sync.sync(paired_note) is True
        assert await sync.sync(paired_note) is False
        assert sync._run_jupytext.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_clears_deadtime(self, paired_note):
        sync = make_sync(returncode=1)
        assert await sync.sync(paired_note) is False
        assert sync.is_sync_blocked() is False

    @pytest.mark.asyncio
    async def test_verbose_notice(self, paired_note):
        notifier = Mock()
        sync = make_sync(notifier=notifier)
        await sync.sync(paired_note, verbose=True)
        notifier.assert_any_call("Syncing...", "info")


class TestCreateNotebook:
    """Test cases for creating and pairing a notebook."""

    @pytest.mark.asyncio
    async def test_python_note(self, tmp_path):
        note = tmp_path / "py.md"
        note.write_text("```python\nx = 1\n```\n", encoding="utf-8")
        notifier = Mock()
        sync = make_sync(notifier=notifier)

        assert await sync.create_notebook(str(note)) is True

        calls = sync._run_jupytext.await_args_list
        assert calls[0].args == ("--to", "notebook", str(note))
        assert calls[1].args[:3] == (str(tmp_path / "py.ipynb"), "--set-formats", "ipynb,md")
        assert json.loads(calls[1].args[-1]) == PYTHON_KERNELSPEC
        notifier.assert_called_with("Notebook paired as Python", "info")

    @pytest.mark.asyncio
    async def test_julia_note(self, tmp_path):
        note = tmp_path / "jl.md"
        note.write_text("```julia\nx = 1\n```\n", encoding="utf-8")
        sync = make_sync()

        assert await sync.create_notebook(str(note)) is True
        assert json.loads(sync._run_jupytext.await_args_list[1].args[-1]) == JULIA_KERNELSPEC

    @pytest.mark.asyncio
    async def test_already_paired(self, paired_note):
        notifier = Mock()
        sync = make_sync(notifier=notifier)

        assert await sync.create_notebook(paired_note) is False
        sync._run_jupytext.assert_not_awaited()
        notifier.assert_called_once_with("Notebook is already paired with this note.", "info")

    @pytest.mark.asyncio
    async def test_jupytext_failure(self, tmp_path):
        note = tmp_path / "py.md"
        note.write_text("text\n", encoding="utf-8")
        notifier = Mock()
        sync = make_sync(notifier=notifier, returncode=1)

        assert await sync.create_notebook(str(note)) is False
        message, level = notifier.call_args[0]
        assert level == "error"
        assert "boom" in message


class TestCreateNote:
    """Test cases for creating a note from a notebook."""

    @pytest.fixture
    def notebook(self, tmp_path):
        path = tmp_path / "nb.ipynb"
        nbformat.write(nbformat.v4.new_notebook(cells=[nbformat.v4.new_code_cell("x = 1")]), str(path))
        return str(path)

    @pytest.mark.asyncio
    async def test_creates_and_pairs(self, notebook, tmp_path):
        notifier = Mock()
        sync = make_sync(notifier=notifier)

        assert await sync.create_note(notebook) == str(tmp_path / "nb.md")

        calls = sync._run_jupytext.await_args_list
        assert calls[0].args == ("--to", "markdown", notebook)
        assert calls[1].args == ("--set-formats", "ipynb,md", notebook)
        notifier.assert_called_with(f"Note created and paired: {tmp_path / 'nb.md'}", "info")

    @pytest.mark.asyncio
    async def test_existing_note_is_kept(self, notebook, tmp_path):
        (tmp_path / "nb.md").write_text("mine\n", encoding="utf-8")
        notifier = Mock()
        sync = make_sync(notifier=notifier)

        assert await sync.create_note(notebook) is None
        sync._run_jupytext.assert_not_awaited()
        notifier.assert_called_once_with("Note is already paired with this notebook.", "info")

    @pytest.mark.asyncio
    async def test_missing_notebook(self, tmp_path):
        notifier = Mock()
        sync = make_sync(notifier=notifier)

        assert await sync.create_note(str(tmp_path / "absent.ipynb")) is None
        assert notifier.call_args[0][1] == "error"

    @pytest.mark.asyncio
    async def test_conversion_failure(self, notebook):
        notifier = Mock()
        sync = make_sync(notifier=notifier, returncode=1)

        assert await sync.create_note(notebook) is None
        message, level = notifier.call_args[0]
        assert level == "error"
        assert "Failed to convert notebook" in message


class TestOutputsSurviveSync:
    """Merged outputs are kept by jupytext whatever the sync direction."""

    @pytest.fixture
    def paired(self, tmp_path):
        pytest.importorskip("jupytext")
        note = tmp_path / "note.md"
        note.write_text("# Note\n\n```python\nprint(1+1)\n```\n", encoding="utf-8")
        return str(note)

    async def _merge_and_sync(self, paired, bidirectional):
        settings = Settings(python_interpreter=sys.executable, bidirectional_sync=bidirectional)
        sync = DocumentSync(lambda: settings)
        sync.DEBOUNCE_DELAY = 0.01
        assert await sync.create_notebook(paired) is True

        notebook = DocumentSync.paired_notebook_path(paired)
        merger = OutputMerger(on_notebook_written=sync.sync)
        assert await merger.merge(notebook, 0, ExecutionResult(stdout="2\n")) is True
        background = list(merger._background)
        assert await asyncio.gather(*background) == [True]
        return sync, notebook

    @staticmethod
    def _first_code_cell(notebook):
        nb = nbformat.read(notebook, as_version=4)
        return [cell for cell in nb.cells if cell.cell_type == "code"][0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bidirectional", [True, False])
    async def test_sync_after_merge(self, paired, bidirectional):
        _, notebook = await self._merge_and_sync(paired, bidirectional)

        cell = self._first_code_cell(notebook)
        assert [o.text for o in cell.outputs] == ["2\n"]
        assert cell.execution_count == 1

    @pytest.mark.asyncio
    async def test_one_directional_note_save(self, paired):
        sync, notebook = await self._merge_and_sync(paired, bidirectional=False)

        assert await sync.sync_now(paired) is True

        cell = self._first_code_cell(notebook)
        assert [o.text for o in cell.outputs] == ["2\n"]


class TestRunJupytext:
    """The jupytext subprocess itself."""

    @pytest.mark.asyncio
    async def test_missing_interpreter(self):
        sync = DocumentSync(lambda: Settings(python_interpreter="/nonexistent/python-temper"))
        returncode, _, stderr = await sync._run_jupytext("--version")
        assert returncode == -1
        assert "could not run" in stderr

    @pytest.mark.asyncio
    async def test_runs_module_with_interpreter(self):
        sync = DocumentSync(lambda: Settings(python_interpreter=sys.executable))
        returncode, _, stderr = await sync._run_jupytext("--version")
        # Exit status depends on whether jupytext is installed; the call itself must work
        assert isinstance(returncode, int)
        if returncode != 0:
            assert "jupytext" in stderr


if __name__ == "__main__":
    pytest.main([__file__])
