"""
Filesystem scanner.

Enumerates the executables visible in the configured scan directories and
guesses where each one came from. The scan is shallow (direct entries only)
and read-only; the reconciler decides what to do with the results.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path

from dustbin.core.config import DustbinConfig, home_dir
from dustbin.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

_INSTALL_ANCHORS = ("/opt/", "/usr/local/")
# first segments under an anchor that say nothing about the package
_GENERIC_SEGMENTS = frozenset({"bin", "sbin", "libexec", "lib", "share"})


@dataclass(frozen=True)
class ScannedBinary:
    path: str
    package_name: str
    source: str
    symlink_target: str | None = None  # resolved path, when it differs from ``path``


def is_executable(path: Path) -> bool:
    """Regular file (after following symlinks) with any execute bit set."""
    try:
        st = path.stat()
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode) and bool(st.st_mode & 0o111)


def _cellar_package(path: str) -> str | None:
    _, sep, rest = path.partition("/Cellar/")
    if not sep:
        return None
    name, slash, _ = rest.partition("/")
    return name if slash and name else None


def guess_package_name(path: str, symlink_target: str | None = None, home: str | None = None) -> str:
    """
    Best-effort package name for the binary at *path*.

    1. a ``Cellar/<name>/`` segment in the symlink target or the path
    2. the first segment after ``/opt/``, ``/usr/local/`` or the home directory,
       unless it is a generic directory such as ``bin`` or a dot-directory
    3. the file's base name
    """
    for candidate in (symlink_target, path):
        if candidate and (name := _cellar_package(candidate)):
            return name

    anchors = list(_INSTALL_ANCHORS)
    if home:
        anchors.append(home.rstrip("/") + "/")
    for anchor in anchors:
        if not path.startswith(anchor):
            continue
        first, slash, _ = path[len(anchor) :].partition("/")
        if slash and first and first not in _GENERIC_SEGMENTS and not first.startswith("."):
            return first
        break

    return os.path.basename(path)


def _home_or_none() -> str | None:
    try:
        return str(home_dir())
    except ConfigError:
        return None


def scan_binaries(config: DustbinConfig) -> list[ScannedBinary]:
    """Scan every configured directory; the first directory to reach a resolved path wins."""
    home = _home_or_none()
    results: list[ScannedBinary] = []
    seen: set[str] = set()

    for directory in config.scan_dirs():
        if not directory.is_dir():
            continue
        source = config.categorize_path(str(directory))
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Skipping unreadable directory %s: %s", directory, exc)
            continue

        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if not (entry.is_file() or entry.is_symlink()):
                    continue
            except OSError:
                continue
            entry_path = Path(entry.path)
            if not is_executable(entry_path):
                continue

            resolved = os.path.realpath(entry.path)
            if resolved in seen:
                continue
            seen.add(resolved)

            target = resolved if resolved != entry.path else None
            results.append(
                ScannedBinary(
                    path=entry.path,
                    package_name=guess_package_name(entry.path, target, home),
                    source=source,
                    symlink_target=target,
                )
            )

    logger.debug("Scanned %d executables", len(results))
    return results


def classify_path(config: DustbinConfig, path: str) -> tuple[str, str]:
    """(source, package_name) for a path found by the daemon rather than a scan."""
    target = None
    if os.path.islink(path):
        target = os.path.realpath(path)
    return config.categorize_path(path), guess_package_name(path, target, _home_or_none())
