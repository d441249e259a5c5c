# FILE: client.py
"""
client.py — peerline chat transport and terminal console.

ChatClient is the transport the rest of the program talks to:

  connect(host, port) / connect_address(addr, port) / attach(sock)
  disconnect() / close()
  send_text(text) / send_message(message) / send_raw(buffer)
  start_listening() / stop_listening(wait=False)

Outgoing:  Message -> codec.encode -> cipher.encrypt -> socket
Incoming:  socket -> cipher.decrypt -> codec.decode -> on_message_received

Failures never raise out of ChatClient; they are handed to the Callbacks
installed at construction time.  Inbound messages are delivered on the
receive thread, so a UI must marshal them onto its own thread if needed.

Known limitations, kept on purpose:
  - send_raw() silently truncates buffers above max_payload_bytes.
  - send_raw() returns True when the socket write itself fails; the failure
    is only visible through on_could_not_send.
"""

from __future__ import annotations

import logging
import select
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import codec
import utils
from codec import Message, ResponseType
from config import (
    DEFAULT_CONNECT_RETRY_DELAY,
    DEFAULT_MAX_RESPONSE_BYTES,
    DEFAULT_READ_RETRY_DELAY,
)
from connection import ConnectionManager, ConnectionState, NotConnectedError, resolve_address
from encryption import Cipher, CipherError, NullCipher

logger = logging.getLogger("peerline.client")

ErrorHandler = Callable[[BaseException], None]
MessageHandler = Callable[[Message], None]


def _noop(_arg) -> None:
    pass


@dataclass
class Callbacks:
    """Optional handlers; any left as None does nothing."""

    on_message_received: Optional[MessageHandler] = None
    on_could_not_connect: Optional[ErrorHandler] = None
    on_unexpected_disconnect: Optional[ErrorHandler] = None
    on_could_not_send: Optional[ErrorHandler] = None

    def __post_init__(self):
        for name in (
            "on_message_received",
            "on_could_not_connect",
            "on_unexpected_disconnect",
            "on_could_not_send",
        ):
            if getattr(self, name) is None:
                setattr(self, name, _noop)


# ---------------------------------------------------------------------------
# Socket helpers
# ---------------------------------------------------------------------------


def _recv_exact(sock: socket.socket, n: int) -> Optional[bytes]:
    """Read exactly *n* bytes from *sock*; None if the peer closes first."""
    buf = b""
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            return None
        buf += chunk
    return buf


class _ReceiveTask:
    """One run of the receive loop: its thread, stop flag and wake-up pipe."""

    def __init__(self, target: Callable[["_ReceiveTask"], None]):
        self.stop = threading.Event()
        self.wake_r, self._wake_w = socket.socketpair()
        self.thread = threading.Thread(
            target=target, args=(self,), name="peerline-recv", daemon=True
        )

    def cancel(self) -> None:
        self.stop.set()
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass

    def close(self) -> None:
        self.wake_r.close()
        self._wake_w.close()


# ---------------------------------------------------------------------------
# ChatClient
# ---------------------------------------------------------------------------


class ChatClient:
    def __init__(
        self,
        cipher: Optional[Cipher] = None,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        read_retry_delay: float = DEFAULT_READ_RETRY_DELAY,
        callbacks: Optional[Callbacks] = None,
    ):
        if max_response_bytes <= codec.HEADER_SIZE:
            raise ValueError(f"max_response_bytes must exceed {codec.HEADER_SIZE}")
        if read_retry_delay < 0:
            raise ValueError("read_retry_delay must not be negative")

        self.cipher             = cipher if cipher is not None else NullCipher()
        self.max_response_bytes = max_response_bytes
        self.read_retry_delay   = read_retry_delay
        self.callbacks          = callbacks or Callbacks()

        self._connection = ConnectionManager(
            on_could_not_connect=lambda exc: self._fire(self.callbacks.on_could_not_connect, exc)
        )
        self._send_lock   = threading.Lock()   # serialises socket writes
        self._listen_lock = threading.Lock()   # guards start/stop transitions
        self._task: Optional[_ReceiveTask] = None

    def __enter__(self) -> "ChatClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def is_listening(self) -> bool:
        task = self._task
        return task is not None and not task.stop.is_set()

    @property
    def state(self) -> ConnectionState:
        if not self.is_connected:
            return ConnectionState.DISCONNECTED
        if self.is_listening:
            return ConnectionState.LISTENING
        return ConnectionState.CONNECTED

    @property
    def peer_address(self) -> Optional[tuple]:
        return self._connection.peer_address

    @property
    def max_payload_bytes(self) -> int:
        """Largest plaintext frame that can go out in one cipher call."""
        block = self.cipher.max_block_size
        if block is None:
            return self.max_response_bytes
        return min(self.max_response_bytes, block)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int) -> bool:
        return self._connection.connect(host, port)

    def connect_address(self, address, port: int) -> bool:
        return self._connection.connect_address(address, port)

    def connect_with_retry(
        self,
        host: str,
        port: int,
        retry_delay: float = DEFAULT_CONNECT_RETRY_DELAY,
        attempts: Optional[int] = None,
    ) -> bool:
        """
        Call connect() until it succeeds, sleeping *retry_delay* in between.

        Gives up after *attempts* tries (None = keep trying).  Returns False
        straight away when already connected or when *host* is not an
        address, since retrying cannot change either outcome.  A port outside
        0-65535 gets a single attempt so the failure is still reported.
        """
        if self.is_connected or resolve_address(host) is None:
            return False
        if not 0 <= port <= 65535:
            return self.connect(host, port)
        tried = 0
        while True:
            if self.connect(host, port):
                return True
            tried += 1
            if attempts is not None and tried >= attempts:
                return False
            time.sleep(retry_delay)

    def attach(self, sock: socket.socket) -> bool:
        return self._connection.attach(sock)

    def disconnect(self) -> None:
        self._connection.disconnect()

    def close(self) -> None:
        """Stop listening, wait for the receive thread, then disconnect."""
        self.stop_listening(wait=True, timeout=max(1.0, self.read_retry_delay * 2))
        self.disconnect()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_text(self, text: str) -> bool:
        return self.send_message(Message.from_text(text))

    def send_message(self, message: Message) -> bool:
        frame = codec.encode(message, self.max_payload_bytes)
        if not frame:
            logger.debug(
                "Not sending %s of %d bytes: frame exceeds %d",
                message.response_type.name, len(message.content), self.max_payload_bytes,
            )
            return False
        return self.send_raw(frame)

    def send_raw(self, buffer: Optional[bytes]) -> bool:
        """
        Encrypt and write one buffer.

        Returns False for None, when not connected, or when encryption fails.
        Returns True once the write has been attempted, even if it failed;
        write errors reach on_could_not_send only.
        """
        if buffer is None:
            return False

        limit = self.max_payload_bytes
        if len(buffer) > limit:
            logger.warning("Truncating outgoing payload from %d to %d bytes", len(buffer), limit)
            buffer = buffer[:limit]

        try:
            sock = self._connection.socket
        except NotConnectedError as exc:
            self._fire(self.callbacks.on_could_not_send, exc)
            return False

        try:
            encrypted = self.cipher.encrypt(bytes(buffer))
        except CipherError as exc:
            logger.warning("Could not encrypt outgoing payload: %s", exc)
            self._fire(self.callbacks.on_could_not_send, exc)
            return False

        try:
            with self._send_lock:
                sock.sendall(encrypted)
            logger.debug("Sent %d bytes (%d plaintext)", len(encrypted), len(buffer))
        except OSError as exc:
            logger.info("Write failed: %s", exc)
            self._fire(self.callbacks.on_could_not_send, exc)
        return True

    # ------------------------------------------------------------------
    # Receive loop
    # ------------------------------------------------------------------

    def start_listening(self) -> bool:
        """Spawn the receive thread.  Returns False if already listening."""
        with self._listen_lock:
            if self.is_listening:
                return False
            previous = self._task
            if (
                previous is not None
                and previous.thread.is_alive()
                and previous.thread is not threading.current_thread()
            ):
                previous.thread.join(self.read_retry_delay)
            task = _ReceiveTask(self._receive_loop)
            self._task = task
            task.thread.start()
        logger.info("Listening for messages")
        return True

    def stop_listening(self, wait: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Ask the receive thread to stop.

        Without *wait* this returns immediately and the thread may still be
        finishing its current read.  With *wait* it joins the thread (at most
        *timeout* seconds).  Returns True when no receive thread is running.
        """
        with self._listen_lock:
            task = self._task
            if task is None:
                return True
            task.cancel()
        if wait and task.thread is not threading.current_thread():
            task.thread.join(timeout)
        return not task.thread.is_alive()

    def _receive_loop(self, task: _ReceiveTask) -> None:
        try:
            while not task.stop.is_set():
                try:
                    data = self._read_unit(task)
                except OSError as exc:
                    if task.stop.is_set():
                        break
                    self._receive_failed(task, exc)
                    continue

                if data is None:
                    continue

                try:
                    payload = self.cipher.decrypt(data)
                except CipherError as exc:
                    logger.warning("Dropping %d undecryptable bytes: %s", len(data), exc)
                    self._receive_failed(task, exc)
                    continue

                message = codec.decode(payload)
                logger.debug(
                    "Received %s (%d bytes)", message.response_type.name, len(message.content)
                )
                self._fire(self.callbacks.on_message_received, message)
        finally:
            task.close()
            logger.debug("Receive loop exited")

    def _read_unit(self, task: _ReceiveTask) -> Optional[bytes]:
        """
        Wait for one inbound unit.

        Returns None when the wait timed out or was cancelled.  A cipher with
        a fixed ciphertext size is read exactly one block at a time.  Without
        one the stream carries bare frames, so one frame is read: the header,
        then exactly the declared content.  A header declaring more than
        max_response_bytes cannot be resynchronised; whatever is pending is
        returned with it and decodes to the too-large fallback.
        """
        sock = self._connection.socket
        try:
            readable, _, _ = select.select([sock, task.wake_r], [], [], self.read_retry_delay)
        except ValueError as exc:
            # socket closed underneath us
            raise NotConnectedError() from exc
        if sock not in readable or task.stop.is_set():
            return None

        size = self.cipher.ciphertext_size
        if size:
            data = _recv_exact(sock, size)
        else:
            data = self._recv_frame(sock)

        if not data:
            self._connection.disconnect()
            raise ConnectionResetError("connection closed by peer")
        return data

    def _recv_frame(self, sock: socket.socket) -> Optional[bytes]:
        header = _recv_exact(sock, codec.HEADER_SIZE)
        if header is None:
            return None
        content_len = codec.frame_content_length(header)
        if content_len < 0 or codec.HEADER_SIZE + content_len > self.max_response_bytes:
            logger.warning("Inbound frame declares %d content bytes; over the limit", content_len)
            return header + sock.recv(self.max_response_bytes - codec.HEADER_SIZE)
        content = _recv_exact(sock, content_len) if content_len else b""
        if content is None:
            return None
        return header + content

    def _receive_failed(self, task: _ReceiveTask, exc: BaseException) -> None:
        logger.debug("Receive failed: %s", exc)
        self._fire(self.callbacks.on_unexpected_disconnect, exc)
        task.stop.wait(self.read_retry_delay)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    @staticmethod
    def _fire(handler: Callable, arg) -> None:
        try:
            handler(arg)
        except Exception:
            logger.exception("Callback %r raised", handler)


# ---------------------------------------------------------------------------
# Terminal console
# ---------------------------------------------------------------------------


class ChatConsole:
    """Line-oriented front end: reads stdin, renders inbound messages."""

    def __init__(self, colors_enabled: bool = True, peer_name: str = "peer"):
        self.colors_enabled = colors_enabled
        self.peer_name      = peer_name
        self.client: Optional[ChatClient] = None

    def callbacks(self) -> Callbacks:
        return Callbacks(
            on_message_received=self.on_message_received,
            on_could_not_connect=self.on_could_not_connect,
            on_unexpected_disconnect=self.on_unexpected_disconnect,
            on_could_not_send=self.on_could_not_send,
        )

    # ------------------------------------------------------------------
    # Handlers (called on the receive thread)
    # ------------------------------------------------------------------

    def on_message_received(self, message: Message) -> None:
        ts = utils.format_timestamp()
        if message.response_type is ResponseType.STRING_MESSAGE:
            utils.safe_print(utils.format_chat_line(
                ts, self.peer_name, message.text, colors_enabled=self.colors_enabled))
            return
        kind = message.response_type.name.lower()
        utils.safe_print(utils.format_system_line(
            f"{ts} [{kind}] {self.peer_name} sent {utils.human_size(len(message.content))} "
            "(not displayed)",
            self.colors_enabled,
        ))

    def on_could_not_connect(self, exc: BaseException) -> None:
        utils.safe_print(utils.cwarn(f"[connect] Could not connect: {exc}"))

    def on_unexpected_disconnect(self, exc: BaseException) -> None:
        utils.safe_print(utils.cerr(f"[disconnect] Connection lost: {exc}"))
        if self.client is not None:
            self.client.stop_listening()
            self.client.disconnect()

    def on_could_not_send(self, exc: BaseException) -> None:
        utils.safe_print(utils.cerr(f"[send] Could not send: {exc}"))

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def input_loop(self) -> None:
        try:
            while True:
                try:
                    line = input()
                except EOFError:
                    break
                if not self.process_input(line):
                    break
        except KeyboardInterrupt:
            pass

    def process_input(self, line: str) -> bool:
        """Handle one line of input.  Returns False when the user quits."""
        line = line.strip()
        if not line:
            return True

        if not line.startswith("/"):
            self._send_text(line)
            return True

        parts = line.split(None, 1)
        cmd   = parts[0].lower()

        if cmd == "/quit":
            return False

        if cmd == "/help":
            self._print_help()
            return True

        if cmd == "/clear":
            utils.clear_screen()
            utils.print_banner(self.colors_enabled)
            return True

        if cmd in ("/image", "/audio") and len(parts) == 2:
            kind = ResponseType.IMAGE if cmd == "/image" else ResponseType.AUDIO
            self._send_file(kind, parts[1])
            return True

        utils.safe_print(utils.cwarn(f"[warn] Unknown command: {cmd}. Type /help for help."))
        return True

    def _send_text(self, text: str) -> None:
        client = self.client
        if client is None:
            return
        if client.send_text(text):
            utils.safe_print(utils.format_chat_line(
                utils.format_timestamp(), "you", text,
                is_self=True, colors_enabled=self.colors_enabled))
        elif client.is_connected:
            utils.safe_print(utils.cwarn(
                f"[send] Message too long (limit {client.max_payload_bytes - codec.HEADER_SIZE} bytes)."
            ))

    def _send_file(self, kind: ResponseType, filepath: str) -> None:
        client = self.client
        if client is None:
            return
        path = Path(filepath).expanduser()
        try:
            data = path.read_bytes()
        except OSError as exc:
            utils.safe_print(utils.cerr(f"[send] Cannot read {filepath}: {exc}"))
            return
        if client.send_message(Message(kind, data)):
            utils.safe_print(utils.cinfo(
                f"[send] {kind.name.lower()} '{path.name}' sent ({utils.human_size(len(data))})."
            ))
        elif client.is_connected:
            utils.safe_print(utils.cwarn(
                f"[send] '{path.name}' is {utils.human_size(len(data))}; "
                f"frames are limited to {client.max_payload_bytes} bytes."
            ))

    def _print_help(self) -> None:
        help_text = """
Commands:
  /help            Show this help.
  /quit            Disconnect and exit.
  /clear           Clear screen.
  /image <file>    Send a file as an image message.
  /audio <file>    Send a file as an audio message.
Anything else is sent as a text message.
"""
        utils.safe_print(utils.cinfo(help_text))


def run_client(host: str, port: int, cipher: Cipher, config: dict) -> None:
    """Connect to a listening peer and chat until /quit or EOF."""
    console = ChatConsole(colors_enabled=config.get("colors_enabled", True))
    client = ChatClient(
        cipher,
        max_response_bytes=config.get("max_response_bytes", DEFAULT_MAX_RESPONSE_BYTES),
        read_retry_delay=config.get("read_retry_delay", DEFAULT_READ_RETRY_DELAY),
        callbacks=console.callbacks(),
    )
    console.client = client

    utils.clear_screen()
    utils.print_banner(console.colors_enabled)

    if resolve_address(host) is None:
        utils.safe_print(utils.cerr(f"[error] '{host}' is not an IP address or 'localhost'."))
        return

    utils.safe_print(utils.cinfo(f"[connect] Connecting to {host}:{port}…"))
    try:
        connected = client.connect_with_retry(
            host, port,
            retry_delay=config.get("connect_retry_delay", DEFAULT_CONNECT_RETRY_DELAY),
        )
    except KeyboardInterrupt:
        return
    if not connected:
        return

    utils.safe_print(utils.cok(f"[connect] Connected to {host}:{port}. Type /help for commands."))
    client.start_listening()
    try:
        console.input_loop()
    finally:
        client.close()
        utils.safe_print(utils.cinfo("[bye] Disconnected."))
