"""
Dynamic-library introspection interface.

Each platform supplies one ``DylibIntrospector``: list a binary's direct
dynamic dependencies, map library files to the packages that own them, and
look up a package's installed size. Tool failures never raise out of an
introspector; they come back as ``DepsStatus.UNKNOWN``, unresolved
libraries, or an unknown (``None``) size.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Sequence

from dustbin.core.constants import TOOL_TIMEOUT_SECONDS
from dustbin.core.deps.models import Introspection
from dustbin.core.store.models import LibPackage

logger = logging.getLogger(__name__)


def run_tool(
    args: Sequence[str], timeout: float = TOOL_TIMEOUT_SECONDS
) -> subprocess.CompletedProcess[str] | None:
    """Run a platform query tool; None if it is missing, hangs, or cannot start."""
    try:
        return subprocess.run(  # nosec B603
            list(args),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("%s failed: %s", args[0], exc)
        return None


def chunked(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def parse_human_size(value: str) -> int | None:
    """``"1.2 MiB"`` -> bytes; None for anything unrecognized."""
    parts = value.split()
    if len(parts) != 2:
        return None
    try:
        number = float(parts[0])
    except ValueError:
        return None
    multiplier = {
        "B": 1,
        "KiB": 1024,
        "KB": 1024,
        "MiB": 1024**2,
        "MB": 1024**2,
        "GiB": 1024**3,
        "GB": 1024**3,
    }.get(parts[1])
    if multiplier is None:
        return None
    return int(number * multiplier)


class DylibIntrospector(ABC):
    """Platform dependency tooling used by the graph builder."""

    name: str = "introspector"

    @abstractmethod
    def introspect(self, binary_path: str) -> Introspection:
        """Direct dynamic dependencies of *binary_path*, core system libraries excluded."""
        ...

    @abstractmethod
    def resolve_lib_packages(self, lib_paths: Sequence[str]) -> list[LibPackage]:
        """Owning package of each library; unowned or unknown libraries are left out."""
        ...

    @abstractmethod
    def package_size(self, manager: str, package_name: str) -> int | None:
        """Installed size in bytes, or None when it cannot be determined."""
        ...

    def analyze(self, binary_path: str) -> set[str]:
        """Dependency set only; empty both for failures and for dependency-free binaries."""
        return set(self.introspect(binary_path).libs)

    def available(self) -> bool:
        return True
