"""
Terminal output helpers for the peerline console.

Colors are applied only when stdout is a TTY, so piped output (selftest,
logs) stays plain text.
"""

from __future__ import annotations

import os
import sys
import threading
import time

# Optional readline for input history
try:
    import readline  # noqa: F401
except ImportError:
    pass

_print_lock = threading.Lock()

RESET  = "\033[0m"
DIM    = "\033[2m"
RED    = "\033[31m"
GREEN  = "\033[32m"
YELLOW = "\033[33m"
BLUE   = "\033[34m"
CYAN   = "\033[36m"


def colorize(text: str, color_code: str, colors_enabled: bool = True) -> str:
    if colors_enabled and sys.stdout.isatty():
        return color_code + text + RESET
    return text


def cerr(text: str) -> str:
    return colorize(text, RED)


def cwarn(text: str) -> str:
    return colorize(text, YELLOW)


def cok(text: str) -> str:
    return colorize(text, GREEN)


def cinfo(text: str) -> str:
    return colorize(text, BLUE)


def clear_screen() -> None:
    os.system("cls" if os.name == "nt" else "clear")


def format_timestamp() -> str:
    """Current local time as [HH:MM]."""
    return time.strftime("[%H:%M]")


def safe_print(message: str) -> None:
    """Print from any thread without interleaving lines."""
    with _print_lock:
        print(message, flush=True)


def print_banner(colors_enabled: bool = True) -> None:
    title = colorize("peerline", CYAN, colors_enabled)
    safe_print(f"\n  {title} · encrypted point-to-point chat\n")


def format_chat_line(
    ts_str: str,
    speaker: str,
    text: str,
    is_self: bool = False,
    colors_enabled: bool = True,
) -> str:
    """`[HH:MM] speaker: text`, with the speaker colored by direction."""
    name = colorize(speaker, GREEN if is_self else CYAN, colors_enabled)
    return f"{ts_str} {name}: {text}"


def format_system_line(text: str, colors_enabled: bool = True) -> str:
    return colorize(text, DIM, colors_enabled)


def human_size(n: float) -> str:
    """Return a human-readable byte count."""
    if n < 1024:
        return f"{int(n)} B"
    for unit in ("KB", "MB", "GB"):
        n /= 1024
        if n < 1024:
            return f"{n:.1f} {unit}"
    return f"{n / 1024:.1f} TB"
