"""Exceptions raised by the console tunnel."""


class ConsoleError(Exception):
    """Base class for every error the console tunnel reports."""


class TerminalError(ConsoleError):
    """The local terminal cannot be switched into raw mode."""


class TunnelBroken(ConsoleError):
    """An established tunnel lost its remote end (I/O error or orderly close).

    `relayed` tells whether any bytes went through before the loss. A console
    that accepts and then drops connections without a byte exchanged is no
    better than one refusing them.
    """

    def __init__(self, message, relayed=False):
        super().__init__(message)
        self.relayed = relayed


class ConsoleUnavailable(ConsoleError):
    """A console endpoint could not be reached at all."""


class TunnelGaveUp(ConsoleError):
    """A tunnel that had been working could not be re-established."""


class ViewerNotFound(ConsoleError):
    """The graphical viewer binary is not installed."""


class ResolverError(ConsoleError):
    """Console descriptors could not be read or parsed."""
