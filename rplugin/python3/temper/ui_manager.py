import logging

import pynvim

OUTPUT_BUFFER_NAME = "temper://output"


class NvimUIManager:
    """
    A class that wraps all Neovim API calls for the Temper plugin.

    Every method talks to Neovim directly and must be called from a
    synchronous handler or from a callback scheduled with nvim.async_call.
    """

    def __init__(self, nvim):
        """
        Initialize the UI manager with a Neovim instance.

        Args:
            nvim: The pynvim.Nvim instance for interacting with Neovim.
        """
        self.nvim = nvim
        self.output_bnum = None
        self._logger = logging.getLogger("temper.ui")

    def get_buffer_snapshot(self):
        """
        Collect what a command needs to know about the current buffer.

        Returns:
            tuple: (file path, cursor line (1-indexed), list of lines)
        """
        buffer = self.nvim.current.buffer
        return buffer.name, self.nvim.current.window.cursor[0], buffer[:]

    def _find_buffer(self, bnum):
        try:
            for buf in self.nvim.buffers:
                if buf.number == bnum and buf.valid:
                    return buf
        except (AttributeError, TypeError, pynvim.api.NvimError):
            return None
        return None

    def show_output(self, lines):
        """
        Show lines in the scratch output buffer, opening a split if needed.

        Args:
            lines (list): List of strings to display
        """
        buffer = self._find_buffer(self.output_bnum) if self.output_bnum is not None else None
        if buffer is None:
            self.nvim.command('botright new')
            buffer = self.nvim.current.buffer
            self.nvim.command('setlocal buftype=nofile')
            self.nvim.command('setlocal bufhidden=hide')
            self.nvim.command('setlocal noswapfile')
            buffer.name = OUTPUT_BUFFER_NAME
            self.output_bnum = buffer.number
            self.nvim.command('wincmd p')

        buffer.options['modifiable'] = True
        buffer[:] = lines if lines else ['(no output)']
        buffer.options['modifiable'] = False

    def open_file(self, path):
        """Edit a file in the current window."""
        self.nvim.command(f"edit {self.nvim.funcs.fnameescape(path)}")

    def reload_buffers(self):
        """Reload buffers whose file was rewritten on disk."""
        try:
            self.nvim.command('checktime')
        except pynvim.api.NvimError as e:
            # E.g. while the command line window is open
            self._logger.debug(f"checktime failed: {e}")
