import argparse
import errno
import functools
import os
import signal
import sys

from . import config as app_config
from .bridge import SocketBridge
from .descriptors import format_console_list
from .errors import ConsoleError, ConsoleUnavailable
from .launchers import launch_viewer
from .logging_utils import configure_debug_logging
from .resolver import resolve
from .selector import ConsoleSelector


def _diagnose(error):
    """Prints a hint for the OS errors an operator can do something about."""
    cause = error.__cause__
    if not isinstance(cause, OSError):
        return
    if cause.errno == errno.EACCES:
        uid = os.geteuid()
        if uid != 0:
            print(f"       Access was denied and the effective uid is {uid}. Please switch to root and retry.", file=sys.stderr)
        else:
            print("       Access was denied while running as root. Check the settings of any active security software (SELinux).", file=sys.stderr)
    elif cause.errno == errno.ECONNREFUSED:
        print("       The connection was refused. Please check that the VM is running and its console is enabled.", file=sys.stderr)
    elif cause.errno == errno.ENOENT:
        print("       The console socket does not exist. Please check that the VM is running.", file=sys.stderr)


def _terminate(signum, frame):
    # Unwinding (rather than dying) lets raw mode be undone on the way out.
    sys.exit(128 + signum)


def run_bridge(unix_path):
    """Bridges one Unix console socket to TCP until the client disconnects."""
    socket_bridge = SocketBridge(unix_path)
    try:
        port = socket_bridge.start()
    except OSError as e:
        raise ConsoleUnavailable(f"Cannot bridge console at {unix_path}: {e}") from e
    print(f"Info: Console {unix_path} is reachable on TCP port {port}", flush=True)
    try:
        socket_bridge.wait()
    finally:
        socket_bridge.close()
    print("Info: Bridge closed.", flush=True)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        description="Attach the local terminal, or a graphical viewer, to a VM console. Press Ctrl-] to leave a text console.",
        formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--vm-state", metavar="FILE", help="JSON state of the VM listing its consoles ('-' reads stdin).")
    parser.add_argument("--console", dest="consoles", action="append", default=[], metavar="KIND:PATH|KIND:PORT",
                        help="A console to try, e.g. text:/run/vm.sock or graphical:5901. May be repeated.")
    parser.add_argument("--domid", type=int, help="Numeric domain id, passed to the text console fallback.")
    parser.add_argument("--list", action="store_true", help="List the VM's consoles and exit.")
    parser.add_argument("--bridge", metavar="PATH", help="Only expose the Unix console socket PATH on a TCP port.")
    parser.add_argument("--retry-ceiling", type=float, default=app_config.RECONNECT_RETRY_CEILING,
                        help="Stop reconnecting once the retry delay exceeds this many seconds.")
    parser.add_argument("--viewer", default=app_config.VIEWER_EXECUTABLE, help="Graphical viewer executable.")
    parser.add_argument("--debug-file", default=app_config.DEBUG_FILE, help="Append timestamped debug messages to this file.")
    parser.add_argument("--viewer-host", default=app_config.VIEWER_HOST, help=argparse.SUPPRESS)
    return parser


def main(argv=None):
    """Parses command-line arguments and attaches to the console."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        configure_debug_logging(args.debug_file)
    except OSError as e:
        print(f"Error: Could not open debug file '{args.debug_file}': {e}", file=sys.stderr)
        sys.exit(1)
    signal.signal(signal.SIGTERM, _terminate)

    try:
        if args.bridge:
            sys.exit(run_bridge(args.bridge))

        vm = resolve(args.vm_state, args.consoles, args.domid)
        if args.list:
            print("\n".join(format_console_list(vm.descriptors)))
            sys.exit(0)

        viewer = functools.partial(launch_viewer, host=args.viewer_host, executable=args.viewer)
        selector = ConsoleSelector(viewer=viewer, retry_ceiling=args.retry_ceiling)
        status = selector.attach(vm.descriptors, vm.domid)
    except ConsoleError as e:
        print(f"Error: {e}", file=sys.stderr)
        _diagnose(e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
    sys.exit(status)
