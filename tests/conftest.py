import socket
import threading
import time

import pytest

from client import Callbacks
from encryption import generate_private_key


@pytest.fixture(scope="session")
def rsa_key():
    # Key generation is the slowest thing in the suite; do it once.
    return generate_private_key(2048)


@pytest.fixture(scope="session")
def peer_rsa_key():
    return generate_private_key(2048)


@pytest.fixture
def listener():
    """A bare loopback listening socket; tests accept() on it themselves."""

    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(4)
    server.settimeout(5)

    yield server

    server.close()


@pytest.fixture
def closed_port():
    """A loopback port number nothing is listening on."""

    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def _wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for


class Recorder:
    """Collects everything the transport reports through its callbacks."""

    def __init__(self):
        self.lock = threading.Lock()
        self.messages = list()
        self.connect_errors = list()
        self.disconnect_errors = list()
        self.send_errors = list()

    def _add(self, bucket, item):
        with self.lock:
            bucket.append(item)

    def callbacks(self):
        return Callbacks(
            on_message_received=lambda m: self._add(self.messages, m),
            on_could_not_connect=lambda e: self._add(self.connect_errors, e),
            on_unexpected_disconnect=lambda e: self._add(self.disconnect_errors, e),
            on_could_not_send=lambda e: self._add(self.send_errors, e),
        )


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def peer_recorder():
    return Recorder()
