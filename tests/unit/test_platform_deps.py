"""Unit tests for the ldd / otool output parsers and package-manager queries."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

from dustbin.core.store.models import DepsStatus, LibPackage
from dustbin.os.deps.base import chunked, parse_human_size
from dustbin.os.deps.linux import (
    LddIntrospector,
    parse_dpkg_search,
    parse_field,
    parse_ldd_output,
    parse_pacman_owner,
    parse_rpm_query,
)
from dustbin.os.deps.macos import OtoolIntrospector, homebrew_package, parse_otool_output

_LDD_OUTPUT = """\
\tlinux-vdso.so.1 (0x00007ffd2a5f1000)
\tlibssl.so.3 => /lib/x86_64-linux-gnu/libssl.so.3 (0x00007f1c8a200000)
\tlibz.so.1 => /lib/x86_64-linux-gnu/libz.so.1 (0x00007f1c8a1e0000)
\tlibmissing.so.2 => not found
\tlibc.so.6 => /lib/x86_64-linux-gnu/libc.so.6 (0x00007f1c89e00000)
\tlibm.so.6 => /lib/x86_64-linux-gnu/libm.so.6 (0x00007f1c8a0f9000)
\t/lib64/ld-linux-x86-64.so.2 (0x00007f1c8a5a0000)
"""

_OTOOL_OUTPUT = """\
/opt/homebrew/bin/wget:
\t/opt/homebrew/opt/libidn2/lib/libidn2.0.dylib (compatibility version 4.0.0, current version 4.8.0)
\t/opt/homebrew/opt/openssl@3/lib/libssl.3.dylib (compatibility version 3.0.0, current version 3.0.0)
\t/usr/lib/libz.1.dylib (compatibility version 1.0.0, current version 1.2.12)
\t/System/Library/Frameworks/CoreFoundation.framework/Versions/A/CoreFoundation (compatibility version 150.0.0)
\t@rpath/libfoo.dylib (compatibility version 1.0.0, current version 1.0.0)
"""


def _completed(stdout: str = "", returncode: int = 0, stderr: str = ""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_parse_human_size(self) -> None:
        assert parse_human_size("1.5 MiB") == 1572864
        assert parse_human_size("12 KiB") == 12288
        assert parse_human_size("3 B") == 3
        assert parse_human_size("big") is None
        assert parse_human_size("1 PB") is None

    def test_chunked(self) -> None:
        assert chunked(["a", "b", "c"], 2) == [["a", "b"], ["c"]]
        assert chunked([], 2) == []


# ---------------------------------------------------------------------------
# Linux
# ---------------------------------------------------------------------------


class TestLddParsing:
    def test_keeps_resolved_non_core_libs(self) -> None:
        assert parse_ldd_output(_LDD_OUTPUT) == {
            "/lib/x86_64-linux-gnu/libssl.so.3",
            "/lib/x86_64-linux-gnu/libz.so.1",
        }

    def test_static_output_is_empty(self) -> None:
        assert parse_ldd_output("\tstatically linked\n") == set()


class TestOwnerParsing:
    def test_dpkg_search(self) -> None:
        text = (
            "libssl3:amd64: /lib/x86_64-linux-gnu/libssl.so.3\n"
            "zlib1g:amd64, zlib1g-dev:amd64: /lib/x86_64-linux-gnu/libz.so.1\n"
            "diversion by foo from: /lib/x86_64-linux-gnu/libz.so.1\n"
            "dpkg-query: no path found matching pattern /lib/other.so\n"
        )
        wanted = {"/lib/x86_64-linux-gnu/libssl.so.3", "/lib/x86_64-linux-gnu/libz.so.1"}
        assert parse_dpkg_search(text, wanted) == [
            LibPackage("/lib/x86_64-linux-gnu/libssl.so.3", "apt", "libssl3"),
            LibPackage("/lib/x86_64-linux-gnu/libz.so.1", "apt", "zlib1g"),
        ]

    def test_rpm_query_pairs_lines_with_arguments(self) -> None:
        text = "openssl-libs\nfile /lib64/stray.so is not owned by any package\nzlib\n"
        chunk = ["/lib64/libssl.so.3", "/lib64/stray.so", "/lib64/libz.so.1"]
        assert parse_rpm_query(text, chunk) == [
            LibPackage("/lib64/libssl.so.3", "rpm", "openssl-libs"),
            LibPackage("/lib64/libz.so.1", "rpm", "zlib"),
        ]

    def test_pacman_owner(self) -> None:
        assert parse_pacman_owner("/usr/lib/libz.so.1 is owned by zlib 1:1.3-1\n") == "zlib"
        assert parse_pacman_owner("error: No package owns /usr/lib/x.so\n") is None

    def test_parse_field(self) -> None:
        text = "Name            : zlib\nInstalled Size  : 392.00 KiB\n"
        assert parse_field(text, "Installed Size") == "392.00 KiB"
        assert parse_field(text, "Size") is None


class TestLddIntrospector:
    def _introspector(self, *tools: str) -> LddIntrospector:
        available = {"ldd", *tools}
        return LddIntrospector(which=lambda name: f"/usr/bin/{name}" if name in available else None)

    def test_owner_tool_selection(self) -> None:
        assert self._introspector("dpkg", "rpm").manager == "apt"
        assert self._introspector("rpm").manager == "rpm"
        assert self._introspector("pacman").owner_tool == "pacman"
        assert self._introspector().owner_tool is None

    def test_introspect_dynamic(self) -> None:
        with patch("dustbin.os.deps.linux.run_tool", return_value=_completed(_LDD_OUTPUT)):
            result = self._introspector().introspect("/usr/local/bin/tool")
        assert result.status is DepsStatus.SOME
        assert "/lib/x86_64-linux-gnu/libssl.so.3" in result.libs

    def test_introspect_static(self) -> None:
        done = _completed("\tnot a dynamic executable\n", returncode=1)
        with patch("dustbin.os.deps.linux.run_tool", return_value=done):
            result = self._introspector().introspect("/usr/local/bin/static")
        assert result.status is DepsStatus.NONE

    def test_introspect_failure(self) -> None:
        with patch("dustbin.os.deps.linux.run_tool", return_value=None):
            assert self._introspector().introspect("/x").status is DepsStatus.UNKNOWN
        with patch("dustbin.os.deps.linux.run_tool", return_value=_completed("", 1, "boom")):
            assert self._introspector().introspect("/x").status is DepsStatus.UNKNOWN

    def test_no_owner_tool_resolves_nothing(self) -> None:
        assert self._introspector().resolve_lib_packages(["/lib/x.so"]) == []

    def test_dpkg_size_in_kib(self) -> None:
        with patch("dustbin.os.deps.linux.run_tool", return_value=_completed("392\n")):
            assert self._introspector("dpkg").package_size("apt", "zlib1g") == 392 * 1024

    def test_size_unknown_on_failure(self) -> None:
        with patch("dustbin.os.deps.linux.run_tool", return_value=_completed("", 1)):
            assert self._introspector("dpkg").package_size("apt", "zlib1g") is None
        assert self._introspector().package_size("nix", "whatever") is None

    def test_pacman_size(self) -> None:
        done = _completed("Name : zlib\nInstalled Size : 2.00 MiB\n")
        with patch("dustbin.os.deps.linux.run_tool", return_value=done):
            assert self._introspector("pacman").package_size("pacman", "zlib") == 2 * 1024**2


# ---------------------------------------------------------------------------
# macOS
# ---------------------------------------------------------------------------


class TestOtool:
    def test_parse_drops_system_and_rpath(self) -> None:
        assert parse_otool_output(_OTOOL_OUTPUT) == {
            "/opt/homebrew/opt/libidn2/lib/libidn2.0.dylib",
            "/opt/homebrew/opt/openssl@3/lib/libssl.3.dylib",
        }

    def test_homebrew_package(self) -> None:
        assert homebrew_package("/opt/homebrew/opt/openssl@3/lib/libssl.3.dylib") == "openssl@3"
        assert homebrew_package("/usr/local/Cellar/jq/1.7/lib/libjq.dylib") == "jq"
        assert homebrew_package("/usr/lib/libz.dylib") is None

    def test_resolve_only_homebrew(self) -> None:
        found = OtoolIntrospector().resolve_lib_packages(
            ["/opt/homebrew/opt/libidn2/lib/libidn2.0.dylib", "/Library/Other/lib.dylib"]
        )
        assert found == [
            LibPackage("/opt/homebrew/opt/libidn2/lib/libidn2.0.dylib", "homebrew", "libidn2")
        ]

    def test_size_from_du(self) -> None:
        done = _completed("2048\t/opt/homebrew/Cellar/jq\n")
        with patch("dustbin.os.deps.macos.run_tool", return_value=done):
            assert OtoolIntrospector().package_size("homebrew", "jq") == 2048 * 1024

    def test_introspect_failure_is_unknown(self) -> None:
        with patch("dustbin.os.deps.macos.run_tool", return_value=None):
            assert OtoolIntrospector().introspect("/x").status is DepsStatus.UNKNOWN
