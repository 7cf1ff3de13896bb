import logging
import sys

from . import config as app_config
from .bridge import SocketBridge
from .descriptors import ConsoleKind, TcpEndpoint, order_by_preference
from .errors import ConsoleUnavailable, TerminalError, ViewerNotFound
from .launchers import launch_viewer, run_text_console_fallback
from .tunnel import connect_and_proxy

logger = logging.getLogger(__name__)

# Failures that mean "this console never got going"; the next one is tried.
_START_FAILURES = (ConsoleUnavailable, TerminalError, ViewerNotFound, OSError)


class ConsoleSelector:
    """
    Picks the console to attach to and runs the session.

    Text consoles are tried before graphical ones. Each collaborator can be
    replaced, which is how the tests observe the order of attempts.
    """

    def __init__(self, tunnel=connect_and_proxy, bridge_factory=SocketBridge,
                 viewer=launch_viewer, fallback=run_text_console_fallback,
                 retry_ceiling=app_config.RECONNECT_RETRY_CEILING):
        self.tunnel = tunnel
        self.bridge_factory = bridge_factory
        self.viewer = viewer
        self.fallback = fallback
        self.retry_ceiling = retry_ceiling

    def _run_text(self, endpoint):
        print(f"Info: Connecting to text console at {endpoint}. Press Ctrl-] to quit.", flush=True)
        self.tunnel(endpoint, self.retry_ceiling)
        return 0

    def _run_graphical(self, endpoint):
        if isinstance(endpoint, TcpEndpoint):
            return self.viewer(endpoint.port)
        socket_bridge = self.bridge_factory(endpoint.path)
        port = socket_bridge.start()
        print(f"Info: Bridged graphical console {endpoint} to TCP port {port}", flush=True)
        try:
            return self.viewer(port)
        finally:
            socket_bridge.close()

    def _connect(self, descriptor):
        endpoint = descriptor.endpoint
        if descriptor.kind is ConsoleKind.TEXT:
            return self._run_text(endpoint)
        return self._run_graphical(endpoint)

    def attach(self, descriptors, domid=None):
        """
        Runs an interactive session on the first console that starts.

        Returns the exit status for the process: 0 after a session ended
        normally, the viewer's or fallback's status when one of those ran,
        and 1 when no console could be reached and no fallback exists.
        Failures of a session that did start (TunnelGaveUp) propagate.
        """
        for descriptor in order_by_preference(descriptors):
            if not descriptor.is_usable:
                logger.debug(f"Skipping {descriptor}")
                continue
            logger.debug(f"Trying {descriptor}")
            try:
                return self._connect(descriptor)
            except _START_FAILURES as e:
                print(f"Warning: {descriptor.kind.value.capitalize()} console at {descriptor.endpoint} unavailable: {e}", file=sys.stderr)

        status = self.fallback(domid)
        if status is None:
            print("Error: Failed to find a text console.", file=sys.stderr)
            return 1
        return status


def attach(descriptors, domid=None, **collaborators):
    """Convenience wrapper around ConsoleSelector(**collaborators).attach()."""
    return ConsoleSelector(**collaborators).attach(descriptors, domid)
