"""
User notification utilities for the Temper plugin.

notify_user() must run on Neovim's side of the host (a sync handler or a
callback passed to nvim.async_call). Code running in the asyncio world should
go through a Notifier instead.
"""
import logging
from typing import Any


def notify_user(nvim: Any, message: str, level: str = 'info') -> None:
    """
    Send a notification to the user.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        message: The message to display to the user
        level: The notification level ('info', 'warning' or 'error')
    """
    if level == 'error':
        nvim.err_write(message + '\n')
    else:
        nvim.out_write(message + '\n')


class Notifier:
    """
    Fire-and-forget notifications that are safe to send from coroutines.

    Instances are callables taking (message, level), the shape expected by
    KernelManager, OutputMerger and DocumentSync.
    """

    def __init__(self, nvim: Any, logger: logging.Logger = None):
        self.nvim = nvim
        self._logger = logger or logging.getLogger('temper.notifications')

    def __call__(self, message: str, level: str = 'info') -> None:
        log = self._logger.error if level == 'error' else self._logger.info
        log(f"Notice: {message}")
        try:
            self.nvim.async_call(lambda: notify_user(self.nvim, message, level=level))
        except Exception as e:
            self._logger.error(f"Failed to schedule notification: {e}")
