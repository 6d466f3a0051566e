"""
launchd integration for macOS.

eslogger needs root, so the daemon is installed as a system LaunchDaemon
(``/Library/LaunchDaemons/com.dustbin.daemon.plist``). The plist sets HOME
to the installing user's home so the root-run daemon reads and writes that
user's config and ledger rather than ``/var/root``.
"""

from __future__ import annotations

import logging
import os
import plistlib
import subprocess
import tempfile
from pathlib import Path

from dustbin.core.config import home_dir
from dustbin.core.exceptions import PlatformError
from dustbin.os.service.base import ServiceSupervisorBackend

logger = logging.getLogger(__name__)

LABEL = "com.dustbin.daemon"
_PLIST_PATH = Path("/Library/LaunchDaemons") / f"{LABEL}.plist"
_LOG_DIR = Path("/var/log/dustbin")


def _sudo(*args: str) -> subprocess.CompletedProcess[bytes]:
    try:
        return subprocess.run(  # nosec B603 B607
            ["sudo", *args],
            capture_output=True,
            timeout=60.0,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise PlatformError(f"sudo {' '.join(args)} failed: {exc}") from exc


class LaunchdService(ServiceSupervisorBackend):
    name = "launchd"

    def __init__(self, plist_path: Path = _PLIST_PATH, log_dir: Path = _LOG_DIR) -> None:
        self._plist_path = plist_path
        self._log_dir = log_dir

    def unit_path(self) -> Path:
        return self._plist_path

    def render(self, exec_path: str) -> str:
        plist = {
            "Label": LABEL,
            "ProgramArguments": [exec_path, "daemon"],
            "EnvironmentVariables": {"HOME": str(home_dir())},
            "RunAtLoad": True,
            "KeepAlive": True,
            "StandardOutPath": str(self._log_dir / "dustbin.log"),
            "StandardErrorPath": str(self._log_dir / "dustbin.err"),
        }
        return plistlib.dumps(plist).decode("utf-8")

    def install(self, exec_path: str) -> Path:
        _sudo("mkdir", "-p", str(self._log_dir))

        # /Library/LaunchDaemons is root-owned: stage the plist, then sudo cp
        fd, tmp_name = tempfile.mkstemp(suffix=".plist")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.render(exec_path))
            result = _sudo("cp", tmp_name, str(self._plist_path))
            if result.returncode != 0:
                raise PlatformError(f"Cannot install {self._plist_path}")
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        result = _sudo("launchctl", "load", "-w", str(self._plist_path))
        if result.returncode != 0:
            raise PlatformError(
                f"launchctl load failed: {result.stderr.decode(errors='replace').strip()}"
            )
        logger.info("Installed LaunchDaemon %s", self._plist_path)
        return self._plist_path

    def uninstall(self) -> bool:
        if not self._plist_path.exists():
            return False
        result = _sudo("launchctl", "unload", str(self._plist_path))
        if result.returncode != 0:
            raise PlatformError(
                f"launchctl unload failed: {result.stderr.decode(errors='replace').strip()}"
            )
        _sudo("rm", "-f", str(self._plist_path))
        return True

    def is_running(self) -> bool:
        if not self._plist_path.exists():
            return False
        try:
            result = subprocess.run(  # nosec B603 B607
                ["pgrep", "-f", "dustbin daemon"],
                capture_output=True,
                timeout=5.0,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0
