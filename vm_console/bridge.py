import logging
import socket
import sys
import threading

from . import config as app_config

logger = logging.getLogger(__name__)


def _relay(source, destination, done, name, block_size):
    """Copies bytes from source to destination until end of stream or error."""
    try:
        while True:
            data = source.recv(block_size)
            if not data:
                logger.debug(f"BRIDGE: {name} reached end of stream")
                break
            destination.sendall(data)
    except OSError as e:
        logger.debug(f"BRIDGE: {name} stopped: {e}")
        # Once the other direction has finished, its shutdown is what stopped us.
        if not done.is_set():
            print(f"Warning: Bridge relay {name} stopped: {e}", file=sys.stderr)
    finally:
        done.set()


def _shutdown(sock):
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already disconnected.
        pass
    sock.close()


class SocketBridge:
    """
    Exposes a Unix-domain console socket as a TCP port, for a single client.

    `start()` connects to the console, opens a listener on an ephemeral port
    and returns that port straight away. A background thread accepts exactly
    one client, closes the listener, and runs one relay thread per direction.
    As soon as either relay stops, both sockets are shut down, which ends the
    other relay too. The bridge is not reconnecting and cannot be restarted.
    """

    def __init__(self, unix_path, bind_address=app_config.BRIDGE_BIND_ADDRESS,
                 backlog=app_config.BRIDGE_BACKLOG, block_size=app_config.BRIDGE_BLOCK_SIZE):
        self.unix_path = unix_path
        self.bind_address = bind_address
        self.backlog = backlog
        self.block_size = block_size
        self.port = None
        self._unix = None
        self._listener = None
        self._thread = None
        self._finished = threading.Event()

    def start(self):
        """Connects to the console and starts listening. Returns the TCP port."""
        unix = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            unix.connect(self.unix_path)
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError:
            unix.close()
            raise
        try:
            listener.bind((self.bind_address, 0))
            listener.listen(self.backlog)
        except OSError:
            listener.close()
            unix.close()
            raise

        self._unix, self._listener = unix, listener
        self.port = listener.getsockname()[1]
        logger.debug(f"BRIDGE: {self.unix_path} listening on {self.bind_address}:{self.port}")

        self._thread = threading.Thread(target=self._serve, name=f"bridge-{self.port}")
        self._thread.daemon = True
        self._thread.start()
        return self.port

    def _serve(self):
        try:
            try:
                client, peer = self._listener.accept()
            except OSError as e:
                logger.debug(f"BRIDGE: accept on port {self.port} failed: {e}")
                _shutdown(self._unix)
                return
            finally:
                self._listener.close()
            logger.debug(f"BRIDGE: accepted {peer[0]}:{peer[1]} on port {self.port}")

            relay_done = threading.Event()
            relays = [
                threading.Thread(target=_relay, args=(client, self._unix, relay_done, "tcp->unix", self.block_size)),
                threading.Thread(target=_relay, args=(self._unix, client, relay_done, "unix->tcp", self.block_size)),
            ]
            for relay in relays:
                relay.daemon = True
                relay.start()

            relay_done.wait()
            _shutdown(client)
            _shutdown(self._unix)
            for relay in relays:
                relay.join()
            logger.debug(f"BRIDGE: port {self.port} closed")
        finally:
            self._finished.set()

    def wait(self, timeout=None):
        """Blocks until the bridge has shut down. Returns False on timeout."""
        return self._finished.wait(timeout)

    def close(self):
        """Stops the bridge, whether or not a client ever connected."""
        if self._listener is not None:
            # shutdown() wakes a thread blocked in accept(); close() alone does not.
            _shutdown(self._listener)
        if self._unix is not None:
            _shutdown(self._unix)
