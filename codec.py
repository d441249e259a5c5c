# FILE: codec.py
"""
codec.py — Message framing for peerline.

Surface:
  Message.from_text(text)      -> Message
  encode(message, max_size)    -> bytes   (b"" when the frame would not fit)
  decode(buffer)               -> Message (never raises)

Wire format (little-endian):
    [1 byte response_type][4 bytes content_len, signed int32][content bytes]

Text content is always UTF-8.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

_HEADER = struct.Struct("<Bi")

HEADER_SIZE = _HEADER.size       # 5
MAX_CONTENT_SIZE = 2**31 - 1
TOO_LARGE_TEXT = "Message too large."
TEXT_ENCODING = "utf-8"


class ResponseType(IntEnum):
    """Content kind carried in the first byte of every frame."""

    STRING_MESSAGE = 0
    IMAGE = 1
    AUDIO = 2


@dataclass(frozen=True)
class Message:
    response_type: ResponseType
    content: bytes

    def __post_init__(self):
        if len(self.content) > MAX_CONTENT_SIZE:
            raise ValueError("message content does not fit in a 32-bit length field")

    @classmethod
    def from_text(cls, text: str) -> "Message":
        return cls(ResponseType.STRING_MESSAGE, text.encode(TEXT_ENCODING))

    @property
    def text(self) -> str:
        """Content decoded as UTF-8; invalid sequences are replaced."""
        return self.content.decode(TEXT_ENCODING, errors="replace")


def encode(message: Message, max_size: Optional[int] = None) -> bytes:
    """
    Serialise *message* into one frame.

    Returns b"" if the frame would be larger than *max_size*; callers treat
    that as "too large to send" and must not write anything.
    """
    if max_size is not None and HEADER_SIZE + len(message.content) > max_size:
        return b""
    return _HEADER.pack(int(message.response_type), len(message.content)) + message.content


def decode(buffer: bytes) -> Message:
    """
    Parse one frame from *buffer*.

    A short or malformed buffer degrades to a StringMessage carrying
    TOO_LARGE_TEXT instead of raising.
    """
    if len(buffer) < HEADER_SIZE:
        return Message.from_text(TOO_LARGE_TEXT)

    type_byte, content_len = _HEADER.unpack_from(buffer, 0)
    end = HEADER_SIZE + content_len
    if content_len < 0 or end > len(buffer):
        return Message.from_text(TOO_LARGE_TEXT)

    try:
        response_type = ResponseType(type_byte)
    except ValueError:
        return Message.from_text(TOO_LARGE_TEXT)

    return Message(response_type, bytes(buffer[HEADER_SIZE:end]))


def frame_content_length(header: bytes) -> int:
    """Content length declared by a frame header; may be negative."""
    return _HEADER.unpack_from(header, 0)[1]
