"""
macOS dependency tooling: ``otool -L`` for edges, Homebrew paths for ownership.

Homebrew is the only package manager resolved here; a library belongs to
the formula named by the path segment after ``opt/`` or ``Cellar/``.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence

from dustbin.core.deps.models import Introspection
from dustbin.core.store.models import LibPackage
from dustbin.os.deps.base import DylibIntrospector, run_tool

_SYSTEM_LIB_PREFIXES = ("/usr/lib/", "/System/", "/Library/Apple/")

HOMEBREW_PREFIXES = (
    "/opt/homebrew/opt/",
    "/opt/homebrew/Cellar/",
    "/usr/local/opt/",
    "/usr/local/Cellar/",
)

CELLAR_ROOTS = ("/opt/homebrew/Cellar", "/usr/local/Cellar")


def parse_otool_output(text: str) -> set[str]:
    """Library paths from ``otool -L``; the first line echoes the binary itself."""
    libs: set[str] = set()
    for line in text.splitlines()[1:]:
        path = line.strip().split(" (compatibility", 1)[0].strip()
        if not path or path.startswith("@") or path.startswith(_SYSTEM_LIB_PREFIXES):
            continue
        libs.add(path)
    return libs


def homebrew_package(path: str) -> str | None:
    for prefix in HOMEBREW_PREFIXES:
        if path.startswith(prefix):
            name = path[len(prefix) :].split("/", 1)[0]
            return name or None
    return None


class OtoolIntrospector(DylibIntrospector):
    name = "otool"

    def available(self) -> bool:
        return shutil.which("otool") is not None

    def introspect(self, binary_path: str) -> Introspection:
        result = run_tool(["otool", "-L", binary_path])
        if result is None or result.returncode != 0:
            return Introspection.failed()
        if "is not an object file" in result.stdout + result.stderr:
            return Introspection.of(set())
        return Introspection.of(parse_otool_output(result.stdout))

    def resolve_lib_packages(self, lib_paths: Sequence[str]) -> list[LibPackage]:
        found = []
        for path in lib_paths:
            package = homebrew_package(path)
            if package:
                found.append(LibPackage(path, "homebrew", package))
        return found

    def package_size(self, manager: str, package_name: str) -> int | None:
        for root in CELLAR_ROOTS:
            result = run_tool(["du", "-sk", f"{root}/{package_name}"])
            if result is None or result.returncode != 0:
                continue
            fields = result.stdout.split()
            if fields and fields[0].isdigit():
                return int(fields[0]) * 1024
        return None
