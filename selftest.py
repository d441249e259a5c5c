# FILE: selftest.py
"""
selftest.py — peerline automated acceptance test.

Starts:
  1. A shared RSA keypair in a temp dir (peerline.py --gen-key)
  2. A listening peer on port 15099
  3. A connecting peer
  4. Asserts:
     (a) the listener displays a line typed on the connector
     (b) the connector displays a reply typed on the listener
     (c) an over-long line is refused with a warning instead of being sent
     (d) the listener notices when the connector quits

Run:
    python selftest.py

Expected output on success:
    [PASS] All 4 acceptance checks passed.
"""

import os
import queue as _queue
import shutil
import subprocess
import sys
import tempfile
import threading as _threading
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TEST_PORT  = 15099
HELLO_TEXT = "hello_from_connector_selftest"
REPLY_TEXT = "hello_from_listener_selftest"
LONG_TEXT  = "x" * 400          # RSA-2048 frames carry at most 185 content bytes

REPO_DIR = Path(__file__).parent


class _OutputReader:
    """Background thread that drains a subprocess stdout into a queue."""

    def __init__(self, proc):
        self._q: _queue.Queue = _queue.Queue()
        self._buf = ""
        t = _threading.Thread(target=self._drain, args=(proc.stdout,), daemon=True)
        t.start()

    def _drain(self, stream):
        while True:
            chunk = stream.read(256)
            if not chunk:
                break
            self._q.put(chunk.decode(errors="replace"))

    def wait_for(self, needle: str, timeout: float = 10.0) -> bool:
        deadline = time.time() + timeout
        while time.time() < deadline:
            if needle in self._buf:
                return True
            try:
                self._buf += self._q.get(timeout=0.2)
            except _queue.Empty:
                pass
        return needle in self._buf


def _type(proc, line: str) -> None:
    proc.stdin.write((line + "\n").encode())
    proc.stdin.flush()


# ---------------------------------------------------------------------------
# Main test
# ---------------------------------------------------------------------------


def run_tests() -> None:
    failures = []

    tmpdir  = tempfile.mkdtemp(prefix="peerline_selftest_")
    keyfile = os.path.join(tmpdir, "shared.pem")

    gen = subprocess.run(
        [sys.executable, "peerline.py", "--gen-key", "--key-file", keyfile],
        cwd=REPO_DIR,
        capture_output=True,
        text=True,
    )
    assert gen.returncode == 0, f"gen-key failed: {gen.stderr}"

    env = {
        **os.environ,
        "PYTHONPATH":       str(REPO_DIR),
        "HOME":             tmpdir,
        "PYTHONUNBUFFERED": "1",
        "TERM":             "dumb",
    }

    procs = []

    def _start(args):
        return subprocess.Popen(
            [sys.executable, "peerline.py"] + args + ["--port", str(TEST_PORT), "--key-file", keyfile],
            cwd=REPO_DIR,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            bufsize=0,
            env=env,
        )

    try:
        # ---- Start listener ----
        listener = _start(["--listen", "--host", "127.0.0.1"])
        procs.append(listener)
        listener_out = _OutputReader(listener)
        print("[selftest] Listener started (PID %d)" % listener.pid)
        if not listener_out.wait_for("Waiting for a peer", timeout=5):
            print("[FAIL] Listener did not come up.")
            failures.append("listener start")

        # ---- Start connector ----
        connector = _start(["--connect", "127.0.0.1"])
        procs.append(connector)
        connector_out = _OutputReader(connector)
        print("[selftest] Connector started (PID %d)" % connector.pid)
        if not connector_out.wait_for("Connected to", timeout=8):
            print("[FAIL] Connector could not connect.")
            failures.append("connect")

        # ---- Test 1: connector -> listener ----
        _type(connector, HELLO_TEXT)
        if listener_out.wait_for(f"peer: {HELLO_TEXT}", timeout=6):
            print("[PASS] Test 1 — Listener received the connector's message.")
        else:
            print("[FAIL] Test 1 — Listener did NOT receive the message.")
            failures.append("connector to listener")

        # ---- Test 2: listener -> connector ----
        _type(listener, REPLY_TEXT)
        if connector_out.wait_for(f"peer: {REPLY_TEXT}", timeout=6):
            print("[PASS] Test 2 — Connector received the listener's reply.")
        else:
            print("[FAIL] Test 2 — Connector did NOT receive the reply.")
            failures.append("listener to connector")

        # ---- Test 3: oversized line is refused ----
        _type(connector, LONG_TEXT)
        if connector_out.wait_for("Message too long", timeout=4):
            print("[PASS] Test 3 — Over-long message was refused.")
        else:
            print("[FAIL] Test 3 — Over-long message was not refused.")
            failures.append("oversized message")

        # ---- Test 4: listener notices the connector leaving ----
        _type(connector, "/quit")
        if listener_out.wait_for("Connection lost", timeout=6):
            print("[PASS] Test 4 — Listener reported the disconnect.")
        else:
            print("[FAIL] Test 4 — Listener did not report the disconnect.")
            failures.append("disconnect notice")

    finally:
        # ---- Teardown ----
        for proc in procs:
            try:
                if proc.stdin:
                    proc.stdin.write(b"/quit\n")
                    proc.stdin.flush()
            except OSError:
                pass
        time.sleep(0.4)
        for proc in procs:
            proc.terminate()
            try:
                proc.wait(timeout=3)
            except subprocess.TimeoutExpired:
                proc.kill()

        shutil.rmtree(tmpdir, ignore_errors=True)

    # ---- Summary ----
    print()
    if failures:
        print(f"[FAIL] {len(failures)} check(s) FAILED: {', '.join(failures)}")
        sys.exit(1)
    else:
        print("[PASS] All 4 acceptance checks passed.")


if __name__ == "__main__":
    run_tests()
