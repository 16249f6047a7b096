"""
Unit tests for the per-language execution queue.
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "rplugin", "python3"))

from temper.errors import ProcessClosedError, ProtocolError
from temper.execution_queue import ExecutionQueue
from temper.protocol import ExecutionResult


class TestExecutionQueue:
    """Test cases for FIFO resolution."""

    @pytest.mark.asyncio
    async def test_requests_are_numbered_in_order(self):
        queue = ExecutionQueue("python")
        requests = [queue.enqueue(f"x = {i}") for i in range(3)]
        assert [r.seq for r in requests] == [1, 2, 3]
        assert all(r.language == "python" for r in requests)
        assert len(queue) == 3

    @pytest.mark.asyncio
    async def test_results_resolve_in_submission_order(self):
        queue = ExecutionQueue("python")
        requests = [queue.enqueue(f"print({i})") for i in range(5)]

        for i in range(5):
            queue.resolve(ExecutionResult(stdout=f"{i}\n"))

        outputs = [(await r.future).stdout for r in requests]
        assert outputs == ["0\n", "1\n", "2\n", "3\n", "4\n"]
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_result_without_pending_request_is_discarded(self):
        queue = ExecutionQueue("python")
        assert queue.resolve(ExecutionResult(stdout="orphan")) is None

    @pytest.mark.asyncio
    async def test_stale_result_is_discarded(self):
        queue = ExecutionQueue("python")
        first = queue.enqueue("a")
        queue.resolve(ExecutionResult(stdout="a", seq=1))
        second = queue.enqueue("b")

        assert queue.resolve(ExecutionResult(stdout="again", seq=1)) is None
        assert not second.future.done()

        queue.resolve(ExecutionResult(stdout="b", seq=2))
        assert (await first.future).stdout == "a"
        assert (await second.future).stdout == "b"

    @pytest.mark.asyncio
    async def test_skipped_requests_fail(self):
        queue = ExecutionQueue("julia")
        first = queue.enqueue("a")
        second = queue.enqueue("b")

        settled = queue.resolve(ExecutionResult(stdout="b", seq=2))

        assert settled is second
        with pytest.raises(ProtocolError):
            await first.future
        assert (await second.future).stdout == "b"

    @pytest.mark.asyncio
    async def test_reject_next(self):
        queue = ExecutionQueue("python")
        first = queue.enqueue("a")
        second = queue.enqueue("b")

        queue.reject_next(ProtocolError("bad payload", "python"))

        with pytest.raises(ProtocolError):
            await first.future
        assert not second.future.done()

    @pytest.mark.asyncio
    async def test_fail_all(self):
        queue = ExecutionQueue("python")
        requests = [queue.enqueue("x") for _ in range(4)]

        count = queue.fail_all(ProcessClosedError("gone", "python"))

        assert count == 4
        assert len(queue) == 0
        for req in requests:
            with pytest.raises(ProcessClosedError):
                await req.future

    @pytest.mark.asyncio
    async def test_reset_sequence(self):
        queue = ExecutionQueue("python")
        queue.enqueue("a")
        queue.fail_all(ProcessClosedError("gone"))
        queue.reset_sequence()
        assert queue.enqueue("b").seq == 1


if __name__ == "__main__":
    pytest.main([__file__])
