"""
Reconnecting text console tunnel.

Connection management is an explicit state machine. `transition` is a pure
function from (state, event) to (state, action); `connect_and_proxy` performs
the actions against real sockets.

    DISCONNECTED(d) --connected------> CONNECTED(d)      proxy
    DISCONNECTED(d) --connect failed-> DISCONNECTED(2d)  sleep d   (d <= ceiling)
    DISCONNECTED(d) --connect failed-> GAVE_UP           give up   (d >  ceiling)
    CONNECTED(d)    --broken---------> DISCONNECTED(2d0) sleep d0
    CONNECTED(d)    --dropped--------> as connect failed from DISCONNECTED(d)
    CONNECTED(d)    --escaped--------> FINISHED          stop

A session that relayed bytes before breaking counts as a working connection
and starts the backoff over from d0. One dropped before any byte went through
counts as a failed attempt, so a console that keeps accepting and closing
connections is retried with growing delays and eventually given up on.
"""

import logging
import socket
import sys
import time
from dataclasses import dataclass
from enum import Enum, auto

from . import config as app_config
from .descriptors import TcpEndpoint, UnixPath
from .errors import ConsoleUnavailable, TunnelBroken, TunnelGaveUp
from .proxy import proxy
from .terminal import RawTerminal

logger = logging.getLogger(__name__)


class Phase(Enum):
    DISCONNECTED = auto()
    CONNECTED = auto()
    FINISHED = auto()
    GAVE_UP = auto()


class Event(Enum):
    CONNECTED = auto()
    CONNECT_FAILED = auto()
    BROKEN = auto()
    DROPPED = auto()
    ESCAPED = auto()


class ActionKind(Enum):
    SLEEP = auto()
    PROXY = auto()
    STOP = auto()
    GIVE_UP = auto()


@dataclass(frozen=True)
class TunnelState:
    phase: Phase
    # Time to wait after the next failed connection attempt.
    delay: float = app_config.INITIAL_RECONNECT_DELAY


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    delay: float = 0.0


def initial_state(initial_delay=app_config.INITIAL_RECONNECT_DELAY):
    return TunnelState(Phase.DISCONNECTED, initial_delay)


def _back_off(state, retry_ceiling):
    if state.delay <= retry_ceiling:
        return TunnelState(Phase.DISCONNECTED, state.delay * 2), Action(ActionKind.SLEEP, state.delay)
    return TunnelState(Phase.GAVE_UP, state.delay), Action(ActionKind.GIVE_UP)


def transition(state, event, retry_ceiling=app_config.RECONNECT_RETRY_CEILING,
               initial_delay=app_config.INITIAL_RECONNECT_DELAY):
    """Returns the (next_state, action) pair for an event in a given state."""
    if state.phase is Phase.DISCONNECTED:
        if event is Event.CONNECTED:
            return TunnelState(Phase.CONNECTED, state.delay), Action(ActionKind.PROXY)
        if event is Event.CONNECT_FAILED:
            return _back_off(state, retry_ceiling)
    elif state.phase is Phase.CONNECTED:
        if event is Event.BROKEN:
            return TunnelState(Phase.DISCONNECTED, initial_delay * 2), Action(ActionKind.SLEEP, initial_delay)
        if event is Event.DROPPED:
            return _back_off(state, retry_ceiling)
        if event is Event.ESCAPED:
            return TunnelState(Phase.FINISHED, state.delay), Action(ActionKind.STOP)
    raise ValueError(f"No transition from {state.phase.name} on {event.name}")


def _open_socket(target):
    """Creates an unconnected socket for target and returns it with its address."""
    if isinstance(target, UnixPath):
        return socket.socket(socket.AF_UNIX, socket.SOCK_STREAM), target.path
    if isinstance(target, TcpEndpoint):
        family, kind, proto, _, address = socket.getaddrinfo(
            target.host, target.port, type=socket.SOCK_STREAM)[0]
        return socket.socket(family, kind, proto), address
    raise TypeError(f"Unsupported console target: {target!r}")


def _is_transient(error):
    return isinstance(error, OSError) and error.errno in app_config.TRANSIENT_CONNECT_ERRNOS


def _run_tunnel(target, retry_ceiling, local_in, local_out, sleep):
    state = initial_state()
    connected_once = False
    last_error = None

    while True:
        sock, address = _open_socket(target)
        try:
            try:
                sock.connect(address)
            except OSError as e:
                if not _is_transient(e):
                    logger.debug(f"Connecting to {target} failed permanently: {e}")
                    error_class = TunnelGaveUp if connected_once else ConsoleUnavailable
                    raise error_class(f"Cannot connect to console at {target}: {e}") from e
                logger.debug(f"Connecting to {target} failed: {e}")
                last_error = e
                event = Event.CONNECT_FAILED
            else:
                connected_once = True
                state, _ = transition(state, Event.CONNECTED, retry_ceiling)
                logger.debug(f"Connected to {target}")
                try:
                    proxy(local_in, local_out, sock)
                    event = Event.ESCAPED
                except TunnelBroken as e:
                    logger.debug(f"Tunnel to {target} broke: {e} (relayed: {e.relayed})")
                    last_error = e
                    event = Event.BROKEN if e.relayed else Event.DROPPED
        finally:
            sock.close()

        state, action = transition(state, event, retry_ceiling)
        if action.kind is ActionKind.SLEEP:
            logger.debug(f"Retrying {target} in {action.delay:.1f}s")
            sleep(action.delay)
        elif action.kind is ActionKind.STOP:
            return
        elif action.kind is ActionKind.GIVE_UP:
            logger.debug(f"Giving up on {target}")
            if connected_once:
                raise TunnelGaveUp(f"Lost the console at {target}: {last_error}") from last_error
            raise ConsoleUnavailable(f"Cannot connect to console at {target}: {last_error}") from last_error


def connect_and_proxy(target, retry_ceiling=app_config.RECONNECT_RETRY_CEILING,
                      local_in=None, local_out=None, terminal=None, sleep=time.sleep):
    """
    Attaches the local terminal to a text console until Ctrl-] is typed.

    The terminal stays in raw mode for the whole retry loop rather than being
    toggled on every attempt. Connection-establishment failures are retried
    with a doubling delay, and so is a session the console drops before any
    byte went through. A session that breaks after relaying data waits the
    initial delay and starts the backoff over.

    Args:
        target: UnixPath or TcpEndpoint of the console.
        retry_ceiling: Give up once the retry delay exceeds this many seconds.
        local_in: Keyboard file descriptor. Defaults to stdin.
        local_out: Screen file descriptor. Defaults to stdout.
        terminal: Context manager that holds the terminal in raw mode.
                  Defaults to a RawTerminal on local_in.
        sleep: Function used to wait between attempts.

    Raises:
        ConsoleUnavailable: No connection could ever be made.
        TunnelGaveUp: The console was reached but later lost for good.
        TerminalError: The local terminal cannot be put into raw mode.
    """
    if local_in is None:
        local_in = sys.stdin.fileno()
    if local_out is None:
        local_out = sys.stdout.fileno()
    if terminal is None:
        terminal = RawTerminal(local_in)
    with terminal:
        _run_tunnel(target, retry_ceiling, local_in, local_out, sleep)
