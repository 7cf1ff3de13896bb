#!/usr/bin/env python3
"""
Shared logging utilities for vm-console.

Provides timestamped debug logging to file for diagnostic purposes. Nothing
goes to the terminal: while a tunnel runs the terminal carries raw console
bytes only.
"""

import logging

PACKAGE_LOGGER = "vm_console"


class TimestampFormatter(logging.Formatter):
    """Formats records as ``[<epoch seconds>] <module>: <message>``."""

    def format(self, record):
        return f"[{record.created:.6f}] {record.name}: {record.getMessage()}"


def configure_debug_logging(debug_file_path=None):
    """
    Route the package's debug records to a file, or nowhere.

    Args:
        debug_file_path: Path of the debug log to append to, or None to
                         disable debug logging.

    Returns:
        The handler that was installed.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if debug_file_path:
        handler = logging.FileHandler(debug_file_path, mode="a", encoding="utf-8")
        handler.setFormatter(TimestampFormatter())
        logger.setLevel(logging.DEBUG)
    else:
        handler = logging.NullHandler()
    logger.addHandler(handler)
    logger.propagate = False
    return handler
