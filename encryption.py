# FILE: encryption.py
"""
encryption.py — Cipher capability for peerline.

Every frame is encrypted whole before it goes on the wire.  A cipher is any
object exposing:

  encrypt(data)      -> bytes
  decrypt(data)      -> bytes
  max_block_size     largest plaintext accepted per call (None = unbounded)
  ciphertext_size    fixed ciphertext length (None = tracks plaintext)

Surface:
  RsaCipher(private_key, peer_public_key=None)
  RsaCipher.from_files(private_path, peer_public_path=None)
  NullCipher()

  generate_private_key(key_size)            -> RSAPrivateKey
  load_private_key(path)                    -> RSAPrivateKey
  load_public_key(path)                     -> RSAPublicKey
  save_private_key(path, key)
  save_public_key(path, key)
  generate_key_files(private_path, public_path=None, key_size=2048)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger("peerline.encryption")

DEFAULT_KEY_SIZE = 2048
_PUBLIC_EXPONENT = 65537
_OAEP_HASH_SIZE = hashes.SHA256.digest_size


class CipherError(ValueError):
    """Raised when a buffer cannot be encrypted or decrypted."""


class Cipher:
    """Base class for frame ciphers."""

    max_block_size: Optional[int] = None
    ciphertext_size: Optional[int] = None

    def encrypt(self, data: bytes) -> bytes:
        raise NotImplementedError

    def decrypt(self, data: bytes) -> bytes:
        raise NotImplementedError


class NullCipher(Cipher):
    """Pass-through cipher for unencrypted sessions."""

    def encrypt(self, data: bytes) -> bytes:
        return bytes(data)

    def decrypt(self, data: bytes) -> bytes:
        return bytes(data)


# ---------------------------------------------------------------------------
# RSA-OAEP
# ---------------------------------------------------------------------------


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


class RsaCipher(Cipher):
    """
    RSA-OAEP (SHA-256) over a single block.

    Outgoing data is encrypted to *peer_public_key*; when no peer key is
    given the cipher encrypts to its own public key, which is the setup where
    both ends share one provisioned keypair.  Incoming data is always
    decrypted with *private_key*.
    """

    def __init__(
        self,
        private_key: rsa.RSAPrivateKey,
        peer_public_key: Optional[rsa.RSAPublicKey] = None,
    ):
        self._private_key = private_key
        self._peer_public_key = peer_public_key or private_key.public_key()

        out_bytes = self._peer_public_key.key_size // 8
        self.max_block_size = out_bytes - 2 * _OAEP_HASH_SIZE - 2
        # Inbound ciphertexts are sized by our own key.
        self.ciphertext_size = private_key.key_size // 8

    @classmethod
    def from_files(cls, private_path: str, peer_public_path: Optional[str] = None) -> "RsaCipher":
        private_key = load_private_key(private_path)
        peer_key = load_public_key(peer_public_path) if peer_public_path else None
        return cls(private_key, peer_key)

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self._private_key.public_key()

    def encrypt(self, data: bytes) -> bytes:
        if len(data) > self.max_block_size:
            raise CipherError(
                f"{len(data)} bytes exceeds the RSA block limit of {self.max_block_size}"
            )
        try:
            return self._peer_public_key.encrypt(bytes(data), _oaep())
        except ValueError as exc:
            raise CipherError(f"RSA encryption failed: {exc}") from exc

    def decrypt(self, data: bytes) -> bytes:
        try:
            return self._private_key.decrypt(bytes(data), _oaep())
        except ValueError as exc:
            raise CipherError("RSA decryption failed") from exc


# ---------------------------------------------------------------------------
# Key files
# ---------------------------------------------------------------------------


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a fresh RSA private key."""
    return rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=key_size)


def load_private_key(path: str) -> rsa.RSAPrivateKey:
    """Load an unencrypted PEM private key from *path*."""
    p = Path(path).expanduser()
    key = serialization.load_pem_private_key(p.read_bytes(), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise CipherError(f"{p} does not hold an RSA private key")
    return key


def load_public_key(path: str) -> rsa.RSAPublicKey:
    """Load a PEM public key from *path*."""
    p = Path(path).expanduser()
    key = serialization.load_pem_public_key(p.read_bytes())
    if not isinstance(key, rsa.RSAPublicKey):
        raise CipherError(f"{p} does not hold an RSA public key")
    return key


def save_private_key(path: str, key: rsa.RSAPrivateKey) -> None:
    """Persist *key* as PKCS#8 PEM, readable by the owner only."""
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    p.chmod(0o600)


def save_public_key(path: str, key: rsa.RSAPublicKey) -> None:
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(
        key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )


def default_public_path(private_path: str) -> str:
    return str(Path(private_path).expanduser()) + ".pub"


def generate_key_files(
    private_path: str,
    public_path: Optional[str] = None,
    key_size: int = DEFAULT_KEY_SIZE,
) -> rsa.RSAPrivateKey:
    """
    Generate a keypair and write it to disk.

    The public half goes to *public_path*, or next to the private key with a
    ".pub" suffix when no path is given.
    """
    key = generate_private_key(key_size)
    save_private_key(private_path, key)
    if public_path is None:
        public_path = default_public_path(private_path)
    save_public_key(public_path, key.public_key())
    logger.info("RSA-%d keypair written to %s and %s", key_size, private_path, public_path)
    return key
