import logging
import os
import sys
import termios
import tty

from prompt_toolkit.input.vt100 import raw_mode

from .errors import TerminalError

logger = logging.getLogger(__name__)


class RawTerminal(raw_mode):
    """
    Puts a terminal into full passthrough mode for the duration of a block.

    prompt_toolkit's raw_mode already turns off echo, canonical input,
    signal keys and flow control, and restores the attributes it captured
    when the block exits. This goes further, the way a serial console needs
    it: no break/parity handling, no output post-processing (so "\\n" is not
    turned into "\\r\\n"), 8-bit characters, and reads that return
    immediately with whatever is available (VMIN=0, VTIME=0).

    Unlike raw_mode, a terminal whose attributes cannot be read is an error:
    running a console over a cooked terminal would mangle the byte stream.

        with RawTerminal(sys.stdin.fileno()):
            ...  # Ctrl-C, Ctrl-Z and friends now reach the remote side

    Not reentrant. Only one RawTerminal may be active per terminal.
    """

    def __init__(self, fileno):
        if not os.isatty(fileno):
            raise TerminalError(f"File descriptor {fileno} is not a terminal")
        super().__init__(fileno)
        if self.attrs_before is None:
            raise TerminalError(f"Could not read terminal attributes of file descriptor {fileno}")

    @classmethod
    def _patch_lflag(cls, attrs):
        return super()._patch_lflag(attrs) & ~termios.ECHONL

    @classmethod
    def _patch_iflag(cls, attrs):
        return super()._patch_iflag(attrs) & ~(
            termios.IGNBRK | termios.BRKINT | termios.PARMRK | termios.ISTRIP
        )

    def __enter__(self):
        try:
            super().__enter__()
            attrs = termios.tcgetattr(self.fileno)
            attrs[tty.OFLAG] &= ~termios.OPOST
            attrs[tty.CFLAG] = (attrs[tty.CFLAG] & ~(termios.CSIZE | termios.PARENB)) | termios.CS8
            attrs[tty.CC][termios.VMIN] = 0
            attrs[tty.CC][termios.VTIME] = 0
            termios.tcsetattr(self.fileno, termios.TCSANOW, attrs)
        except termios.error as e:
            self.__exit__(None, None, None)
            raise TerminalError(f"Could not switch terminal to raw mode: {e}") from e
        logger.debug(f"Terminal on fd {self.fileno} switched to raw mode")
        return self

    def __exit__(self, *a):
        super().__exit__(*a)
        logger.debug(f"Terminal on fd {self.fileno} restored")


def with_raw_terminal(action, fileno=None):
    """Runs action() with the terminal in raw mode and returns its result."""
    if fileno is None:
        fileno = sys.stdin.fileno()
    with RawTerminal(fileno):
        return action()
