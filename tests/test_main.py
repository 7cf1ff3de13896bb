#!/usr/bin/env python3
"""Tests for the command-line entry point."""

import errno
import json
import os
import shutil
import socket
import tempfile
import threading
import time

import pytest

from vm_console import config as app_config
from vm_console import main as main_module
from vm_console.errors import ConsoleUnavailable, TunnelGaveUp
from vm_console.main import main


@pytest.fixture(autouse=True)
def no_fallback(monkeypatch):
    """Keeps any real xenconsole on the test host out of the picture."""
    monkeypatch.setattr(app_config, "TEXT_CONSOLE_FALLBACKS", [])


def _exit_code(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def test_list_consoles(capsys):
    assert _exit_code(["--list", "--console", "text:/run/vm.sock", "--console", "graphical:5901"]) == 0
    assert capsys.readouterr().out.splitlines() == [
        "protocol   port   path",
        "text       0      /run/vm.sock",
        "graphical  5901",
    ]


def test_list_from_state_file(tmp_path, capsys):
    state = tmp_path / "vm.json"
    state.write_text(json.dumps({"domids": [1], "consoles": [{"protocol": "rfb", "port": 5900}]}))
    assert _exit_code(["--list", "--vm-state", str(state)]) == 0
    assert "graphical  5900" in capsys.readouterr().out


def test_no_console_and_no_fallback(capsys):
    assert _exit_code(["--domid", "3"]) == 1
    assert capsys.readouterr().err.splitlines() == ["Error: Failed to find a text console."]


def test_fallback_receives_domid(tmp_path, monkeypatch):
    args_file = tmp_path / "args.txt"
    console = tmp_path / "xenconsole"
    console.write_text(f'#!/bin/sh\necho "$@" > {args_file}\n')
    console.chmod(0o755)
    monkeypatch.setattr(app_config, "TEXT_CONSOLE_FALLBACKS", [str(console)])
    assert _exit_code(["--domid", "12"]) == 0
    assert args_file.read_text() == "12\n"


def test_bad_console_spec(capsys):
    assert _exit_code(["--console", "spice:5900"]) == 1
    assert capsys.readouterr().err.startswith("Error: Unknown console protocol 'spice'")


def test_console_error_from_session(monkeypatch, capsys):
    def attach(self, descriptors, domid=None):
        raise TunnelGaveUp("Lost the console at /t: gone")

    monkeypatch.setattr(main_module.ConsoleSelector, "attach", attach)
    assert _exit_code(["--console", "text:/t"]) == 1
    assert capsys.readouterr().err == "Error: Lost the console at /t: gone\n"


def test_diagnose_refused(monkeypatch, capsys):
    def attach(self, descriptors, domid=None):
        cause = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")
        raise ConsoleUnavailable("Cannot connect") from cause

    monkeypatch.setattr(main_module.ConsoleSelector, "attach", attach)
    assert _exit_code(["--console", "text:2222"]) == 1
    err = capsys.readouterr().err.splitlines()
    assert err[0] == "Error: Cannot connect"
    assert "refused" in err[1]


def test_retry_ceiling_reaches_selector(monkeypatch):
    seen = {}

    def attach(self, descriptors, domid=None):
        seen["ceiling"] = self.retry_ceiling
        return 0

    monkeypatch.setattr(main_module.ConsoleSelector, "attach", attach)
    assert _exit_code(["--retry-ceiling", "0.5", "--console", "text:/t"]) == 0
    assert seen["ceiling"] == 0.5


def test_debug_file_written(tmp_path):
    debug_file = tmp_path / "debug.log"
    assert _exit_code(["--debug-file", str(debug_file), "--console", "text:"]) == 1
    main_module.configure_debug_logging(None)
    assert debug_file.exists()


def test_unwritable_debug_file(tmp_path, capsys):
    debug_file = tmp_path / "missing" / "debug.log"
    assert _exit_code(["--debug-file", str(debug_file), "--console", "text:/t"]) == 1
    assert capsys.readouterr().err.startswith("Error: Could not open debug file")


def test_bridge_mode(capsys):
    directory = tempfile.mkdtemp(prefix="vmc")
    path = os.path.join(directory, "vnc.sock")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(path)
    server.listen(1)
    codes = []
    thread = threading.Thread(target=lambda: codes.append(main_module.run_bridge(path)))
    try:
        thread.start()
        console_conn, _ = server.accept()
        port = None
        for _ in range(100):
            out = capsys.readouterr().out
            if "TCP port" in out:
                port = int(out.split("TCP port ")[1].split()[0])
                break
            time.sleep(0.05)
        assert port is not None
        client = socket.create_connection(("127.0.0.1", port), timeout=10)
        client.sendall(b"hi")
        assert console_conn.recv(2) == b"hi"
        client.close()
        thread.join(timeout=10)
        console_conn.close()
    finally:
        server.close()
        shutil.rmtree(directory, ignore_errors=True)
    assert codes == [0]
