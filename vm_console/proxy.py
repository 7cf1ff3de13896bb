import logging
import os
import select

from . import config as app_config
from .errors import TunnelBroken

logger = logging.getLogger(__name__)


class StreamBuffer:
    """
    A fixed-size byte buffer for one direction of a tunnel.

    Bytes between `start` and `end` have been read but not yet written. Both
    cursors go back to zero once everything has been written, so the whole
    block is available for the next read.
    """

    def __init__(self, size):
        self._data = bytearray(size)
        self.start = 0
        self.end = 0

    def __len__(self):
        return self.end - self.start

    @property
    def room(self):
        return len(self._data) - self.end

    def append(self, chunk):
        """Stores chunk after the pending bytes. The caller keeps it within room."""
        self._data[self.end:self.end + len(chunk)] = chunk
        self.end += len(chunk)

    def clear(self):
        self.start = self.end = 0

    def drain(self, fd):
        """Writes as much of the pending bytes to fd as it accepts."""
        with memoryview(self._data) as view:
            written = os.write(fd, view[self.start:self.end])
        self.start += written
        if self.start == self.end:
            self.start = self.end = 0
        return written


class TunnelSession:
    """Runtime state of one proxy attempt: a buffer per direction and the escape flag."""

    def __init__(self, block_size=app_config.BLOCK_SIZE, escape_byte=app_config.ESCAPE_BYTE):
        self.to_local = StreamBuffer(block_size)
        self.to_remote = StreamBuffer(block_size)
        self.escape_byte = escape_byte
        self.finished = False
        # Set once any byte has been read from either side.
        self.relayed = False

    def read_local(self, fd):
        """
        Reads keyboard input into the remote-bound buffer.

        Everything from the escape byte on is discarded and the session is
        marked finished. End of input finishes the session as well.
        """
        chunk = os.read(fd, self.to_remote.room)
        if not chunk:
            logger.debug("Local input reached end of file")
            self.finished = True
            return
        escape_at = chunk.find(self.escape_byte)
        if escape_at >= 0:
            logger.debug(f"Escape byte seen after {escape_at} byte(s) of input")
            chunk = chunk[:escape_at]
            self.finished = True
        self.relayed = self.relayed or bool(chunk)
        self.to_remote.append(chunk)

    def read_remote(self, fd):
        """Reads console output into the local-bound buffer."""
        chunk = os.read(fd, self.to_local.room)
        if not chunk:
            if self.finished:
                # Nobody is left to receive what was typed before the escape.
                logger.debug("Console closed while the session was ending")
                self.to_remote.clear()
                return
            raise TunnelBroken("Connection closed by the console", self.relayed)
        self.relayed = True
        self.to_local.append(chunk)


def proxy(local_in, local_out, remote, block_size=app_config.BLOCK_SIZE, escape_byte=app_config.ESCAPE_BYTE):
    """
    Relays bytes between the local terminal and a connected console socket.

    Pending output is always written before anything more is read, console
    output first, so a fast producer is held back by a slow consumer and no
    byte read is ever dropped. When nothing is pending the loop blocks in
    select() until either side has data.

    Returns normally once the escape byte has been typed and everything read
    before it has been delivered, or dropped if the console went away at the
    same moment. Otherwise raises TunnelBroken when the console closes the
    connection or an I/O error occurs on either side.

    Args:
        local_in: File descriptor of the keyboard side (usually stdin).
        local_out: File descriptor of the screen side (usually stdout).
        remote: Connected socket, or its file descriptor.
    """
    remote_fd = remote if isinstance(remote, int) else remote.fileno()
    session = TunnelSession(block_size, escape_byte)
    try:
        while True:
            if session.to_local:
                session.to_local.drain(local_out)
            elif session.to_remote:
                session.to_remote.drain(remote_fd)
            elif session.finished:
                logger.debug("Tunnel finished by the operator")
                return
            else:
                readable, _, _ = select.select([local_in, remote_fd], [], [])
                if local_in in readable:
                    session.read_local(local_in)
                if remote_fd in readable:
                    session.read_remote(remote_fd)
    except OSError as e:
        if session.finished:
            logger.debug(f"Console I/O failed while the session was ending: {e}")
            return
        raise TunnelBroken(f"Console I/O failed: {e}", session.relayed) from e
