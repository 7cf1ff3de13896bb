import errno

# --- Global Configuration & Executable Paths ---

# Path to the debug log file, if enabled via command line.
DEBUG_FILE = None

# The graphical (RFB/VNC) viewer binary, looked up on PATH.
VIEWER_EXECUTABLE = "vncviewer"

# Out-of-process text console attachers, tried in order. Each is called with
# the VM's numeric domain id as its only argument.
TEXT_CONSOLE_FALLBACKS = [
    "/usr/lib/xen-4.1/bin/xenconsole",
    "/usr/lib/xen-4.2/bin/xenconsole",
    "/usr/lib/xen/bin/xenconsole",
]

# --- Text Console Tunnel ---

# Size of each direction's buffer in the proxy loop.
BLOCK_SIZE = 65536
# Ctrl-] typed on the local terminal ends the session. It is never forwarded.
ESCAPE_BYTE = 0x1D
# First delay between reconnect attempts, in seconds. Doubles on every failure.
INITIAL_RECONNECT_DELAY = 0.1
# The tunnel gives up once the next delay would exceed this many seconds.
RECONNECT_RETRY_CEILING = 5.0
# Host used for consoles that are only published as a TCP port.
LOOPBACK_HOST = "127.0.0.1"

# connect() failures with these errnos are worth retrying; anything else aborts.
TRANSIENT_CONNECT_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.ENOENT,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.EAGAIN,
})

# --- Unix Socket to TCP Bridge ---

# Chunk size used by each bridge relay.
BRIDGE_BLOCK_SIZE = 16384
# Listen backlog for the bridge; only one connection is ever accepted.
BRIDGE_BACKLOG = 5
# Interface the bridge listens on. Port 0 asks the kernel for an ephemeral one.
BRIDGE_BIND_ADDRESS = "127.0.0.1"
# Host name handed to the viewer alongside the port.
VIEWER_HOST = "localhost"

# --- Console Protocol Names ---

# Names accepted for each console kind, in VM state files and on the command line.
TEXT_PROTOCOL_NAMES = ("text", "vt100", "serial")
GRAPHICAL_PROTOCOL_NAMES = ("graphical", "rfb", "vnc")
