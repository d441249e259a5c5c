# FILE: config.py
"""
config.py — Configuration loading for peerline.

Loads (in priority order):
  1. CLI flags
  2. JSON config file (--config PATH or peerline_config.json in cwd)
  3. Hard-coded defaults

Example peerline_config.json:
  {
    "port": 5000,
    "host": "127.0.0.1",
    "key_file": "~/.peerline/private.pem",
    "peer_key": "~/.peerline/peer.pem",
    "transport": {"max_response_bytes": 1024, "read_retry_delay": 0.1}
  }
"""

import argparse
import json
from pathlib import Path
from typing import Any

DEFAULT_PORT                = 5000
DEFAULT_HOST                = "127.0.0.1"
DEFAULT_LISTEN_HOST         = "0.0.0.0"
DEFAULT_MAX_RESPONSE_BYTES  = 1024
DEFAULT_READ_RETRY_DELAY    = 0.1      # seconds between receive attempts after a failure
DEFAULT_CONNECT_RETRY_DELAY = 1.0
DEFAULT_KEY_SIZE            = 2048
DEFAULT_CONFIG_FILE         = "peerline_config.json"

DEFAULT_KEY_PATH = "~/.peerline/private.pem"


def _load_json_config(path: str | None) -> dict:
    """Load JSON config from *path* (or the default config file if it exists)."""
    candidates = []
    if path:
        candidates.append(path)
    candidates.append(DEFAULT_CONFIG_FILE)

    for c in candidates:
        p = Path(c).expanduser()
        if p.exists():
            try:
                data = json.loads(p.read_text())
            except (json.JSONDecodeError, OSError):
                continue
            if isinstance(data, dict):
                return data
    return {}


def get_config_value(config: dict, dotted_key: str, default: Any = None) -> Any:
    """Look up "a.b.c" in nested dicts; return *default* if any level is missing."""
    node: Any = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def build_arg_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    p = argparse.ArgumentParser(
        prog="peerline",
        description="peerline — point-to-point encrypted chat over TCP",
    )

    mode = p.add_mutually_exclusive_group(required=True)
    mode.add_argument("--listen",  action="store_true", help="Wait for a peer to connect.")
    mode.add_argument("--connect", metavar="HOST",      help="Connect to a listening peer at HOST.")
    mode.add_argument(
        "--gen-key",
        action="store_true",
        help="Generate an RSA keypair at --key-file PATH and exit.",
    )

    p.add_argument("--host",     default=None, metavar="ADDR",
                   help=f"Listen address (default {DEFAULT_LISTEN_HOST}).")
    p.add_argument("--port",     type=int, default=None, metavar="PORT",
                   help=f"TCP port (default {DEFAULT_PORT}).")
    p.add_argument("--key-file", default=None, metavar="PATH",
                   help=f"RSA private key, PEM (default {DEFAULT_KEY_PATH}).")
    p.add_argument("--peer-key", default=None, metavar="PATH",
                   help="Peer's RSA public key, PEM. Defaults to our own public key.")
    p.add_argument("--public-key-file", default=None, metavar="PATH",
                   help="Where --gen-key writes the public key (default KEY_FILE.pub).")
    p.add_argument("--key-size", type=int, default=None, metavar="BITS",
                   help=f"RSA key size for --gen-key (default {DEFAULT_KEY_SIZE}).")
    p.add_argument("--plain",    action="store_true",
                   help="Send frames unencrypted (debugging only).")
    p.add_argument("--max-response-bytes", type=int, default=None, metavar="N",
                   help=f"Largest frame sent or read (default {DEFAULT_MAX_RESPONSE_BYTES}).")
    p.add_argument("--retry-delay", type=float, default=None, metavar="SECONDS",
                   help=f"Receive-loop poll interval (default {DEFAULT_READ_RETRY_DELAY}).")
    p.add_argument("--config",   default=None, metavar="PATH",
                   help="JSON config file path.")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    return p


def load_config(argv: list[str] | None = None) -> dict[str, Any]:
    """
    Parse CLI args and merge with JSON config file.

    Returns a plain dict with all resolved settings.
    """
    parser = build_arg_parser()
    args   = parser.parse_args(argv)
    jcfg   = _load_json_config(args.config)

    def _get(key_cli, key_json=None, default=None):
        cli_val = getattr(args, key_cli.replace("-", "_"), None)
        if cli_val is not None and cli_val is not False:
            return cli_val
        if key_json:
            value = get_config_value(jcfg, key_json)
            if value is not None:
                return value
        return default

    listen_default = DEFAULT_LISTEN_HOST if args.listen else DEFAULT_HOST

    cfg: dict[str, Any] = {
        # Modes
        "listen":   args.listen,
        "connect":  args.connect,
        "gen_key":  args.gen_key,

        # Network
        "host":     _get("host", "host", listen_default),
        "port":     _get("port", "port", DEFAULT_PORT),
        "connect_retry_delay": get_config_value(
            jcfg, "connect_retry_delay", DEFAULT_CONNECT_RETRY_DELAY),

        # Transport
        "max_response_bytes": _get("max-response-bytes", "transport.max_response_bytes",
                                   DEFAULT_MAX_RESPONSE_BYTES),
        "read_retry_delay":   _get("retry-delay", "transport.read_retry_delay",
                                   DEFAULT_READ_RETRY_DELAY),

        # Crypto
        "key_file":        _get("key-file", "key_file", DEFAULT_KEY_PATH),
        "peer_key":        _get("peer-key", "peer_key", None),
        "public_key_file": _get("public-key-file", "public_key_file", None),
        "key_size":        _get("key-size", "key_size", DEFAULT_KEY_SIZE),
        "plain":           bool(args.plain or jcfg.get("plain", False)),

        # Console
        "colors_enabled":  jcfg.get("colors_enabled", True),
        "verbose":         args.verbose,
    }

    return cfg
