"""
Linux dependency tooling: ``ldd`` for edges; dpkg, rpm or pacman for ownership.

The owner-query tool is picked once, by which of ``dpkg``, ``rpm`` and
``pacman`` is on PATH, in that order.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Sequence

from dustbin.core.constants import OWNER_QUERY_CHUNK
from dustbin.core.deps.models import Introspection
from dustbin.core.store.models import LibPackage
from dustbin.os.deps.base import DylibIntrospector, chunked, parse_human_size, run_tool

logger = logging.getLogger(__name__)

# glibc pieces present on every system; not useful as dependency edges
SKIP_LIB_PREFIXES = (
    "linux-vdso.so",
    "linux-gate.so",
    "ld-linux",
    "libpthread.so",
    "libdl.so",
    "librt.so",
    "libm.so",
    "libc.so",
)

_OWNER_TOOLS = (("dpkg", "apt"), ("rpm", "rpm"), ("pacman", "pacman"))


def parse_ldd_output(text: str) -> set[str]:
    """Resolved library paths from ``ldd`` output.

    Only ``name => /path (0x...)`` lines carry a path; the loader and vdso
    lines have no arrow, and ``not found`` entries are dropped.
    """
    libs: set[str] = set()
    for line in text.splitlines():
        name, arrow, target = line.strip().partition("=>")
        if not arrow:
            continue
        path = target.strip().split(" (", 1)[0].strip()
        if not path or path == "not found":
            continue
        if name.strip().startswith(SKIP_LIB_PREFIXES):
            continue
        libs.add(path)
    return libs


def parse_dpkg_search(text: str, wanted: set[str]) -> list[LibPackage]:
    """``dpkg -S`` lines look like ``libssl3:amd64: /usr/lib/x86_64-linux-gnu/libssl.so.3``."""
    found: list[LibPackage] = []
    for line in text.splitlines():
        owner, sep, path = line.partition(": ")
        if not sep or owner.startswith("diversion by"):
            continue
        path = path.strip()
        if path not in wanted:
            continue
        # "pkg-a, pkg-b: /path" when several packages ship the file
        package = owner.split(",")[0].split(":")[0].strip()
        if package:
            found.append(LibPackage(path, "apt", package))
    return found


def parse_rpm_query(text: str, chunk: Sequence[str]) -> list[LibPackage]:
    """``rpm -qf --queryformat '%{NAME}\\n'`` prints one line per argument, in order."""
    found: list[LibPackage] = []
    for package, path in zip(text.splitlines(), chunk):
        package = package.strip()
        if package and not package.startswith("file ") and " " not in package:
            found.append(LibPackage(path, "rpm", package))
    return found


def parse_pacman_owner(text: str) -> str | None:
    """``/usr/lib/libfoo.so is owned by foo 1.2.3-1`` -> ``foo``."""
    _, sep, rest = text.partition("is owned by ")
    if not sep:
        return None
    words = rest.split()
    return words[0] if words else None


def parse_field(text: str, field: str) -> str | None:
    """Value of a ``Field   : value`` line from ``pacman -Qi`` / ``rpm -qi``."""
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == field:
            return value.strip()
    return None


class LddIntrospector(DylibIntrospector):
    name = "ldd"

    def __init__(self, which: Callable[[str], str | None] = shutil.which) -> None:
        self._which = which
        self.owner_tool, self.manager = next(
            ((tool, manager) for tool, manager in _OWNER_TOOLS if which(tool)),
            (None, None),
        )

    def available(self) -> bool:
        return self._which("ldd") is not None

    def introspect(self, binary_path: str) -> Introspection:
        result = run_tool(["ldd", binary_path])
        if result is None:
            return Introspection.failed()
        if result.returncode != 0:
            # "not a dynamic executable" for static binaries and scripts
            if "not a dynamic executable" in (result.stdout + result.stderr):
                return Introspection.of(set())
            return Introspection.failed()
        return Introspection.of(parse_ldd_output(result.stdout))

    def resolve_lib_packages(self, lib_paths: Sequence[str]) -> list[LibPackage]:
        paths = list(lib_paths)
        if not paths or self.owner_tool is None:
            return []
        if self.owner_tool == "dpkg":
            return self._resolve_dpkg(paths)
        if self.owner_tool == "rpm":
            return self._resolve_rpm(paths)
        return self._resolve_pacman(paths)

    def _resolve_dpkg(self, paths: list[str]) -> list[LibPackage]:
        found: list[LibPackage] = []
        for chunk in chunked(paths, OWNER_QUERY_CHUNK):
            # dpkg exits 1 when any path is unowned but still reports the rest
            result = run_tool(["dpkg", "-S", *chunk])
            if result is not None:
                found += parse_dpkg_search(result.stdout, set(chunk))
        return found

    def _resolve_rpm(self, paths: list[str]) -> list[LibPackage]:
        found: list[LibPackage] = []
        for chunk in chunked(paths, OWNER_QUERY_CHUNK):
            result = run_tool(["rpm", "-qf", "--queryformat", "%{NAME}\\n", *chunk])
            if result is not None:
                found += parse_rpm_query(result.stdout, chunk)
        return found

    def _resolve_pacman(self, paths: list[str]) -> list[LibPackage]:
        found: list[LibPackage] = []
        for path in paths:
            result = run_tool(["pacman", "-Qo", path])
            if result is None or result.returncode != 0:
                continue
            package = parse_pacman_owner(result.stdout)
            if package:
                found.append(LibPackage(path, "pacman", package))
        return found

    def package_size(self, manager: str, package_name: str) -> int | None:
        if manager == "apt":
            result = run_tool(["dpkg-query", "-W", "-f=${Installed-Size}", package_name])
            if result is None or result.returncode != 0:
                return None
            try:
                return int(result.stdout.strip()) * 1024  # KiB
            except ValueError:
                return None
        if manager == "pacman":
            result = run_tool(["pacman", "-Qi", package_name])
            if result is None or result.returncode != 0:
                return None
            value = parse_field(result.stdout, "Installed Size")
            return parse_human_size(value) if value else None
        if manager == "rpm":
            result = run_tool(["rpm", "-qi", package_name])
            if result is None or result.returncode != 0:
                return None
            value = parse_field(result.stdout, "Size")
            try:
                return int(value) if value else None
            except ValueError:
                return None
        return None
