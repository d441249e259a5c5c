# FILE: server.py
"""
server.py — listening side of a peerline conversation.

The listener accepts one peer at a time and wraps the accepted socket in the
same ChatClient transport the connecting side uses, so both ends share the
framing, cipher and receive loop.  While a peer is attached further
connections are refused; once it disconnects the next one is accepted.
"""

import logging
import socket
import threading
from typing import Optional

import utils
from client import Callbacks, ChatClient, ChatConsole
from config import (
    DEFAULT_LISTEN_HOST,
    DEFAULT_MAX_RESPONSE_BYTES,
    DEFAULT_PORT,
    DEFAULT_READ_RETRY_DELAY,
)
from encryption import Cipher

logger = logging.getLogger("peerline.server")


class ChatServer:
    """Accepts a single peer into `self.peer`."""

    def __init__(
        self,
        host: str = DEFAULT_LISTEN_HOST,
        port: int = DEFAULT_PORT,
        cipher: Optional[Cipher] = None,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        read_retry_delay: float = DEFAULT_READ_RETRY_DELAY,
        callbacks: Optional[Callbacks] = None,
    ):
        self.host = host
        self.port = port
        self.peer = ChatClient(
            cipher,
            max_response_bytes=max_response_bytes,
            read_retry_delay=read_retry_delay,
            callbacks=callbacks,
        )
        self._server_sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._closed = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def address(self) -> Optional[tuple]:
        if self._server_sock is None:
            return None
        return self._server_sock.getsockname()[:2]

    def bind(self) -> tuple:
        """Create the listening socket.  Port 0 picks a free port."""
        if self._server_sock is None:
            family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
            server_sock = socket.socket(family, socket.SOCK_STREAM)
            server_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                server_sock.bind((self.host, self.port))
                server_sock.listen(1)
            except OSError:
                server_sock.close()
                raise
            self._server_sock = server_sock
            logger.info("peerline listening on %s:%d", *self.address)
        return self.address

    def serve_forever(self) -> None:
        if self._closed.is_set():
            return
        self.bind()
        server_sock = self._server_sock
        try:
            while not self._closed.is_set():
                try:
                    sock, addr = server_sock.accept()
                except OSError:
                    if self._closed.is_set():
                        break
                    raise
                self._handle_connection(sock, addr)
        finally:
            self._close_listener()

    def start(self) -> threading.Thread:
        """Run serve_forever() on a daemon thread."""
        self.bind()
        t = threading.Thread(target=self.serve_forever, name="peerline-accept", daemon=True)
        t.start()
        self._accept_thread = t
        return t

    def close(self) -> None:
        self._closed.set()
        self._close_listener()
        self.peer.close()
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(1.0)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_connection(self, sock: socket.socket, addr: tuple) -> None:
        if not self.peer.attach(sock):
            logger.warning("Refusing %s: already talking to %s", addr, self.peer.peer_address)
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()
            return

        logger.info("Peer connected from %s", addr)
        self.peer.stop_listening(wait=True, timeout=1.0)
        self.peer.start_listening()

    def _close_listener(self) -> None:
        server_sock, self._server_sock = self._server_sock, None
        if server_sock is None:
            return
        try:
            server_sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        server_sock.close()


def run_server(host: str, port: int, cipher: Cipher, config: dict) -> None:
    """Wait for a peer and chat with it until /quit or EOF."""
    console = ChatConsole(colors_enabled=config.get("colors_enabled", True))
    server = ChatServer(
        host=host,
        port=port,
        cipher=cipher,
        max_response_bytes=config.get("max_response_bytes", DEFAULT_MAX_RESPONSE_BYTES),
        read_retry_delay=config.get("read_retry_delay", DEFAULT_READ_RETRY_DELAY),
        callbacks=console.callbacks(),
    )
    console.client = server.peer

    utils.clear_screen()
    utils.print_banner(console.colors_enabled)
    try:
        bound_host, bound_port = server.bind()
    except OSError as exc:
        utils.safe_print(utils.cerr(f"[error] Cannot listen on {host}:{port}: {exc}"))
        return
    utils.safe_print(utils.cinfo(f"[listen] Waiting for a peer on {bound_host}:{bound_port}…"))

    server.start()
    try:
        console.input_loop()
    finally:
        server.close()
        utils.safe_print(utils.cinfo("\n[listen] Shutting down."))
