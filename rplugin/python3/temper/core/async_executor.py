"""
AsyncExecutor - runs the plugin's coroutines from synchronous pynvim commands.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from ..errors import KernelError
from ..utils.notifications import notify_user


class AsyncExecutor:
    """
    Schedules coroutines on the host's event loop on behalf of pynvim commands.

    Kernel failures have already been reported to the user by the kernel
    manager, so they are only logged here; anything else is reported once.
    """

    def __init__(self, nvim, logger: Optional[logging.Logger] = None):
        """
        Initialize the AsyncExecutor.

        Args:
            nvim: The pynvim.Nvim instance for interacting with Neovim
            logger: Optional logger instance. If None, will create one.
        """
        self.nvim = nvim
        self._logger = logger or logging.getLogger("temper.async_executor")
        self._tasks = set()

    def _report(self, error_context: str, error: BaseException):
        if isinstance(error, KernelError):
            self._logger.info(f"{error_context} ended with kernel error: {error}")
            return
        self._logger.error(f"{error_context} failed: {error}")
        error_msg = str(error)
        try:
            self.nvim.async_call(lambda: notify_user(self.nvim, f"{error_context} failed: {error_msg}", level="error"))
        except Exception as notify_error:
            self._logger.error(f"Failed to notify user of {error_context} error: {notify_error}")

    async def execute_async(self, coro: Awaitable[Any], error_context: str = "operation") -> Any:
        """
        Await a coroutine, reporting its failure before re-raising it.

        Args:
            coro: The coroutine to execute
            error_context: Context string for error messages

        Returns:
            The result of the coroutine execution
        """
        try:
            return await coro
        except Exception as e:
            self._report(error_context, e)
            raise

    def execute_sync(self, coro: Optional[Awaitable[Any]], error_context: str = "operation") -> Any:
        """
        Run a coroutine from a synchronous command handler.

        Inside the pynvim host the loop is already running, so the coroutine
        is scheduled as a background task and None is returned. Without a
        running loop (tests, scripts) it is run to completion.

        Args:
            coro: The coroutine to execute, or None when the command had
                nothing to do
            error_context: Context string for error messages

        Returns:
            The coroutine's result when run to completion, otherwise None
        """
        if coro is None:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            return asyncio.run(self._run_quietly(coro, error_context))

        task = loop.create_task(self._run_quietly(coro, error_context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # Never hand the task back: pynvim would try to serialize it
        return None

    async def _run_quietly(self, coro: Awaitable[Any], error_context: str) -> Any:
        try:
            return await self.execute_async(coro, error_context)
        except Exception:
            # Already reported by execute_async
            return None
