import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from .errors import ProtocolError
from .protocol import ExecutionResult


@dataclass
class ExecutionRequest:
    """Represents one pending code execution."""

    code: str
    language: str
    future: asyncio.Future
    seq: int  # Position among the frames sent to the current process


class ExecutionQueue:
    """
    Strict FIFO of pending executions for a single language.

    Requests are resolved in submission order: each decoded result settles
    the oldest pending request. When results carry the interpreter's frame
    counter, the counter is checked against the head so that a stray or a
    lost response cannot shift every following result onto the wrong request.
    """

    def __init__(self, language: str):
        self.language = language
        self._pending: Deque[ExecutionRequest] = deque()
        self._next_seq = 1
        self._logger = logging.getLogger(f"temper.queue.{language}")

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> List[ExecutionRequest]:
        return list(self._pending)

    def reset_sequence(self):
        """Restart frame numbering; called whenever a fresh process boots."""
        self._next_seq = 1

    def enqueue(self, code: str) -> ExecutionRequest:
        """
        Append a new request to the tail of the queue.

        Must be called from within the running event loop.
        """
        loop = asyncio.get_running_loop()
        req = ExecutionRequest(code=code, language=self.language, future=loop.create_future(), seq=self._next_seq)
        self._next_seq += 1
        self._pending.append(req)
        self._logger.debug(f"Queued request #{req.seq}, queue depth: {len(self._pending)}")
        return req

    def resolve(self, result: ExecutionResult) -> Optional[ExecutionRequest]:
        """
        Settle the request a decoded result belongs to.

        Args:
            result: The decoded result

        Returns:
            The settled request, or None if the result matched nothing.
        """
        if result.seq is not None:
            if self._pending and self._pending[0].seq > result.seq:
                self._logger.warning(f"Discarding stale result #{result.seq} (expecting #{self._pending[0].seq})")
                return None
            while self._pending and self._pending[0].seq < result.seq:
                skipped = self._pending.popleft()
                self._logger.warning(f"No result received for request #{skipped.seq}, got #{result.seq}")
                self._settle_error(
                    skipped,
                    ProtocolError(f"No result received for request #{skipped.seq}", self.language),
                )

        if not self._pending:
            self._logger.warning("Received a result with no pending request; discarding it")
            return None

        req = self._pending.popleft()
        if not req.future.done():
            req.future.set_result(result)
        self._logger.debug(f"Resolved request #{req.seq}, queue depth: {len(self._pending)}")
        return req

    def reject_next(self, exc: Exception) -> Optional[ExecutionRequest]:
        """Fail the oldest pending request, e.g. when its response was malformed."""
        if not self._pending:
            self._logger.warning(f"Protocol failure with no pending request: {exc}")
            return None
        req = self._pending.popleft()
        self._settle_error(req, exc)
        return req

    def fail_all(self, exc: Exception) -> int:
        """
        Fail every pending request with the given error.

        Returns:
            int: The number of requests that were failed
        """
        count = 0
        while self._pending:
            self._settle_error(self._pending.popleft(), exc)
            count += 1
        if count:
            self._logger.info(f"Failed {count} pending request(s): {exc}")
        return count

    @staticmethod
    def _settle_error(req: ExecutionRequest, exc: Exception):
        if not req.future.done():
            req.future.set_exception(exc)
