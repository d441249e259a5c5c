"""
peerline - Point-to-point encrypted chat

Main entry point providing listen, connect and key-generation modes.
"""

from __future__ import annotations

import logging
import sys

from client import run_client
from config import load_config
from encryption import (
    CipherError,
    NullCipher,
    RsaCipher,
    default_public_path,
    generate_key_files,
)
from server import run_server


def _build_cipher(config: dict):
    """Resolve the session cipher: --plain, else RSA from the key files."""
    if config["plain"]:
        print("[warn] --plain: frames are sent unencrypted.", file=sys.stderr)
        return NullCipher()
    try:
        return RsaCipher.from_files(config["key_file"], config["peer_key"])
    except (OSError, ValueError, CipherError) as e:
        print(f"Cannot load key: {e}", file=sys.stderr)
        print("Generate one with: peerline --gen-key --key-file PATH", file=sys.stderr)
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    config = load_config(argv)

    logging.basicConfig(
        level=logging.DEBUG if config["verbose"] else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if config["gen_key"]:
        public_path = config["public_key_file"] or default_public_path(config["key_file"])
        try:
            generate_key_files(config["key_file"], public_path, key_size=config["key_size"])
        except (OSError, ValueError) as e:
            print(f"Cannot write key: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"[keygen] RSA-{config['key_size']} keypair written to {config['key_file']} and {public_path}")
        return

    cipher = _build_cipher(config)

    if config["listen"]:
        run_server(
            host=config["host"],
            port=config["port"],
            cipher=cipher,
            config=config,
        )
    else:
        run_client(
            host=config["connect"],
            port=config["port"],
            cipher=cipher,
            config=config,
        )


if __name__ == "__main__":
    main()
