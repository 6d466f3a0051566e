"""
Linux exec events via ``fatrace``.

fatrace wraps fanotify. With ``-f O -t`` it reports file opens with a
timestamp, one per line::

    14:02:11.123456 bash(4242): O /usr/local/bin/rg

The opened path is the fourth space-separated field. Opens of files outside
a binary directory are not exec events and are dropped.
"""

from __future__ import annotations

from dustbin.os.monitor.base import EventSource

_BINARY_DIR_MARKERS = ("/bin/", "/.cargo/bin/", "/.local/bin/", "/go/bin/")


def is_binary_path(path: str) -> bool:
    return any(marker in path for marker in _BINARY_DIR_MARKERS)


class FatraceSource(EventSource):
    name = "fatrace"

    def __init__(self, use_sudo: bool = True) -> None:
        self._use_sudo = use_sudo

    def command(self) -> list[str]:
        cmd = ["fatrace", "-f", "O", "-t"]
        return ["sudo", *cmd] if self._use_sudo else cmd

    def parse_line(self, line: str) -> str | None:
        parts = line.split(" ", 3)
        if len(parts) < 4 or not parts[1].endswith(":"):
            raise ValueError(f"unexpected fatrace line: {line[:120]!r}")
        path = parts[3].strip()
        if not path.startswith("/"):
            raise ValueError(f"fatrace path is not absolute: {path[:120]!r}")
        return path if is_binary_path(path) else None

    def setup_hint(self) -> str:
        return (
            "fatrace requires root privileges. Install it with your package manager "
            "(e.g. sudo apt install fatrace) and allow the daemon user to run it via sudo."
        )
