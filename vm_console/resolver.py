"""
Console descriptor resolution.

The daemon that owns VM state is not part of this package. What it hands over
is a JSON snapshot of one VM, of which only two keys matter here::

    {
        "domids": [7],
        "consoles": [
            {"protocol": "vt100", "path": "/var/run/vm7/serial.sock", "port": 0},
            {"protocol": "rfb", "path": "", "port": 5907}
        ]
    }

Descriptors may also be given directly on the command line.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional

from .descriptors import ConsoleDescriptor, ConsoleKind, parse_console_spec
from .errors import ResolverError

logger = logging.getLogger(__name__)


@dataclass
class VmConsoles:
    """What the resolver knows about one VM's consoles."""
    descriptors: List[ConsoleDescriptor] = field(default_factory=list)
    domid: Optional[int] = None


def _descriptor_from_record(record):
    if not isinstance(record, dict) or "protocol" not in record:
        raise ResolverError(f"Console entry has no protocol: {record!r}")
    kind = ConsoleKind.from_name(str(record["protocol"]))
    path = record.get("path") or ""
    try:
        port = int(record.get("port") or 0)
    except (TypeError, ValueError):
        raise ResolverError(f"Console entry has an invalid port: {record!r}") from None
    return ConsoleDescriptor(kind, path=str(path), port=port)


def parse_vm_state(document):
    """Builds VmConsoles from an already-decoded VM state document."""
    if not isinstance(document, dict):
        raise ResolverError("VM state must be a JSON object")
    records = document.get("consoles") or []
    descriptors = [_descriptor_from_record(record) for record in records]
    domids = document.get("domids") or []
    try:
        domid = int(domids[0]) if domids else None
    except (TypeError, ValueError, KeyError):
        raise ResolverError(f"VM state has an invalid domid: {domids!r}") from None
    logger.debug(f"Resolved {len(descriptors)} console(s), domid={domid}")
    return VmConsoles(descriptors=descriptors, domid=domid)


def load_vm_state(path):
    """Reads a VM state JSON file. A path of '-' reads standard input."""
    try:
        if path == "-":
            document = json.load(sys.stdin)
        else:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
    except OSError as e:
        raise ResolverError(f"Could not read VM state file '{path}': {e}") from e
    except json.JSONDecodeError as e:
        raise ResolverError(f"VM state file '{path}' is not valid JSON: {e}") from e
    return parse_vm_state(document)


def resolve(state_file=None, console_specs=(), domid=None):
    """
    Combines the command-line inputs into one VmConsoles.

    Consoles from the state file come first, in the order the daemon listed
    them, followed by the ones given with --console. An explicit domid
    overrides the state file's.
    """
    vm = load_vm_state(state_file) if state_file else VmConsoles()
    vm.descriptors.extend(parse_console_spec(spec) for spec in console_specs)
    if domid is not None:
        vm.domid = domid
    return vm
