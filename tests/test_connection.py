import ipaddress
import socket

import pytest

from connection import ConnectionManager, NotConnectedError, resolve_address


def test_resolve_address():

    assert resolve_address("localhost") == ipaddress.ip_address("127.0.0.1")
    assert resolve_address("LocalHost") == ipaddress.ip_address("127.0.0.1")
    assert resolve_address("10.1.2.3") == ipaddress.ip_address("10.1.2.3")
    assert resolve_address("::1") == ipaddress.ip_address("::1")

    assert resolve_address("example.com") is None
    assert resolve_address("") is None
    assert resolve_address("300.1.1.1") is None


def test_connect_and_disconnect(listener):

    port = listener.getsockname()[1]
    manager = ConnectionManager()

    assert manager.is_connected is False
    assert manager.connect("127.0.0.1", port) is True
    peer, _ = listener.accept()

    try:
        assert manager.is_connected is True
        assert manager.peer_address == ("127.0.0.1", port)

        # Only one active socket at a time.
        assert manager.connect("127.0.0.1", port) is False

        manager.disconnect()
        assert manager.is_connected is False
        assert manager.peer_address is None

        # Idempotent.
        manager.disconnect()
        assert manager.is_connected is False
    finally:
        peer.close()


def test_connect_localhost(listener):

    port = listener.getsockname()[1]
    manager = ConnectionManager()

    assert manager.connect("LOCALHOST", port) is True
    listener.accept()[0].close()
    manager.disconnect()


def test_connect_refused(closed_port):

    errors = list()
    manager = ConnectionManager(on_could_not_connect=errors.append)

    assert manager.connect("127.0.0.1", closed_port) is False
    assert manager.is_connected is False
    assert len(errors) == 1
    assert isinstance(errors[0], OSError)


def test_connect_invalid_address():
    """ A string that is not an address is refused without a connect attempt,
        and without a callback.
    """

    errors = list()
    manager = ConnectionManager(on_could_not_connect=errors.append)

    assert manager.connect("not an address", 5000) is False
    assert errors == []


def test_socket_accessor(listener):

    manager = ConnectionManager()
    with pytest.raises(NotConnectedError):
        manager.socket

    manager.connect("127.0.0.1", listener.getsockname()[1])
    peer, _ = listener.accept()
    assert isinstance(manager.socket, socket.socket)

    manager.disconnect()
    peer.close()
    with pytest.raises(NotConnectedError):
        manager.socket


def test_not_connected_error_is_connection_error():

    assert issubclass(NotConnectedError, ConnectionError)
    assert str(NotConnectedError()) == "not connected"


def test_attach(listener):

    port = listener.getsockname()[1]
    outgoing = socket.create_connection(("127.0.0.1", port))
    accepted, _ = listener.accept()

    manager = ConnectionManager()
    try:
        assert manager.attach(accepted) is True
        assert manager.is_connected is True

        other = socket.socket()
        assert manager.attach(other) is False
        other.close()
    finally:
        manager.disconnect()
        outgoing.close()


def test_connect_port_out_of_range():
    """ connect() reports a bad port through the callback instead of letting
        the OverflowError from the socket layer escape.
    """

    errors = list()
    manager = ConnectionManager(on_could_not_connect=errors.append)

    assert manager.connect("127.0.0.1", 70000) is False
    assert manager.connect("localhost", -1) is False
    assert manager.is_connected is False
    assert len(errors) == 2
    assert all(isinstance(e, OverflowError) for e in errors)


def test_connect_socket_creation_failure(monkeypatch):

    def no_sockets(*args, **kwargs):
        raise OSError(24, "Too many open files")

    errors = list()
    manager = ConnectionManager(on_could_not_connect=errors.append)
    monkeypatch.setattr(socket, "socket", no_sockets)

    assert manager.connect("127.0.0.1", 5000) is False
    assert len(errors) == 1
    assert errors[0].errno == 24
