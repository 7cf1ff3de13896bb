from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from . import config as app_config
from .errors import ResolverError


class ConsoleKind(Enum):
    """The two kinds of console a VM can publish."""
    TEXT = "text"
    GRAPHICAL = "graphical"

    @classmethod
    def from_name(cls, name):
        """Maps a protocol name such as 'vt100' or 'rfb' to a ConsoleKind."""
        lowered = name.strip().lower()
        if lowered in app_config.TEXT_PROTOCOL_NAMES:
            return cls.TEXT
        if lowered in app_config.GRAPHICAL_PROTOCOL_NAMES:
            return cls.GRAPHICAL
        raise ResolverError(f"Unknown console protocol '{name}'")


@dataclass(frozen=True)
class UnixPath:
    path: str

    def __str__(self):
        return self.path


@dataclass(frozen=True)
class TcpEndpoint:
    host: str
    port: int

    def __str__(self):
        return f"{self.host}:{self.port}"


Endpoint = Union[UnixPath, TcpEndpoint]


@dataclass(frozen=True)
class ConsoleDescriptor:
    """
    One way of reaching a VM's console.

    A console is published either as a filesystem path (Unix-domain socket)
    or as a TCP port on the hypervisor host. An empty path or a zero port
    means "not available by that transport"; the path wins when both are set.
    """
    kind: ConsoleKind
    path: str = ""
    port: int = 0

    @property
    def endpoint(self) -> Optional[Endpoint]:
        if self.path:
            return UnixPath(self.path)
        if self.port > 0:
            return TcpEndpoint(app_config.LOOPBACK_HOST, self.port)
        return None

    @property
    def is_usable(self) -> bool:
        return self.endpoint is not None

    def __str__(self):
        return f"{self.kind.value} console at {self.endpoint or 'nowhere'}"


def order_by_preference(descriptors):
    """
    Returns the descriptors with text consoles before graphical ones.

    The sort is stable: consoles of the same kind keep the order the resolver
    gave them.
    """
    return sorted(descriptors, key=lambda d: 0 if d.kind is ConsoleKind.TEXT else 1)


def parse_console_spec(spec):
    """
    Parses a command-line console description.

    Accepted forms are ``KIND:/absolute/path`` and ``KIND:PORT``, where KIND is
    one of the protocol names in config (e.g. ``text:/run/vm1.sock`` or
    ``graphical:5901``).
    """
    if ":" not in spec:
        raise ResolverError(f"Console must be given as KIND:PATH or KIND:PORT, not '{spec}'")
    kind_name, where = spec.split(":", 1)
    kind = ConsoleKind.from_name(kind_name)
    if where.isdigit():
        port = int(where)
        if not 0 < port < 65536:
            raise ResolverError(f"Console port out of range: {port}")
        return ConsoleDescriptor(kind, port=port)
    if not where:
        raise ResolverError(f"Console '{spec}' has neither a path nor a port")
    return ConsoleDescriptor(kind, path=where)


def format_console_list(descriptors):
    """Renders descriptors as the lines of a 'protocol port path' table."""
    def line(protocol, port, path):
        return f"{protocol:<10} {port:<6} {path}".rstrip()

    lines = [line("protocol", "port", "path")]
    for descriptor in descriptors:
        lines.append(line(descriptor.kind.value, str(descriptor.port), descriptor.path))
    return lines
