"""External programs the console selector hands sessions to."""

import logging
import os
import shutil
import subprocess
import sys

from . import config as app_config
from .errors import ViewerNotFound

logger = logging.getLogger(__name__)


def find_viewer(executable=app_config.VIEWER_EXECUTABLE):
    """Returns the full path of the graphical viewer, or raises ViewerNotFound."""
    path = shutil.which(executable)
    if not path:
        raise ViewerNotFound(f"Graphical viewer '{executable}' not found in PATH")
    return path


def launch_viewer(port, host=app_config.VIEWER_HOST, executable=app_config.VIEWER_EXECUTABLE):
    """Runs the graphical viewer against host:port and waits for it to exit."""
    path = find_viewer(executable)
    address = f"{host}:{port}"
    print(f"Info: Starting graphical viewer {path} {address}", flush=True)
    process = subprocess.Popen([path, address])
    return_code = process.wait()
    logger.debug(f"Viewer exited with status {return_code}")
    return return_code


def find_text_console_fallback(candidates=None):
    """Returns the first well-known text console executable that exists, or None."""
    if candidates is None:
        candidates = app_config.TEXT_CONSOLE_FALLBACKS
    for candidate in candidates:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def run_text_console_fallback(domid, candidates=None):
    """
    Hands the console over to an out-of-process attacher.

    Returns the attacher's exit status, or None when no attacher is
    installed (or there is no domain id to give it).
    """
    executable = find_text_console_fallback(candidates)
    if executable is None or domid is None:
        logger.debug(f"No text console fallback usable (executable={executable}, domid={domid})")
        return None
    print(f"Info: Falling back to {executable} for domain {domid}", flush=True)
    try:
        return subprocess.call([executable, str(domid)])
    except OSError as e:
        logger.debug(f"Running {executable} failed: {e}")
        print(f"Warning: Could not run {executable}: {e}", file=sys.stderr)
        return None
