"""
systemd user service integration for Linux.

Generates and installs a systemd user service unit for the Dustbin daemon.
The service runs under the current user's session (not as root); the
daemon reaches fatrace through sudo.

Service lifecycle::

    dustbin service install               # generate + install + enable --now
    systemctl --user status dustbin       # check status
    journalctl --user -u dustbin -f       # follow logs
    dustbin service uninstall             # disable --now + remove

The unit file is written to: ~/.config/systemd/user/dustbin.service
(respects $XDG_CONFIG_HOME).
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

from dustbin.core.config import home_dir
from dustbin.core.exceptions import PlatformError
from dustbin.os.service.base import ServiceSupervisorBackend

logger = logging.getLogger(__name__)

_UNIT_NAME = "dustbin"
_SERVICE_NAME = f"{_UNIT_NAME}.service"

_UNIT_TEMPLATE = """\
[Unit]
Description=Dustbin - track binary usage
After=default.target

[Service]
Type=simple
ExecStart={exec_path} daemon
Restart=always
RestartSec=5
SyslogIdentifier=dustbin

[Install]
WantedBy=default.target
"""


def generate_unit_file(exec_path: str) -> str:
    """
    Generate a systemd user service unit file.

    Args:
        exec_path: Absolute path to the ``dustbin`` executable.

    Returns:
        Unit file content as a string.
    """
    return _UNIT_TEMPLATE.format(exec_path=exec_path)


def systemd_user_dir() -> Path:
    """Return the systemd user unit directory (~/.config/systemd/user/)."""
    xdg_config = os.environ.get("XDG_CONFIG_HOME") or str(home_dir() / ".config")
    return Path(xdg_config) / "systemd" / "user"


def _systemctl(*args: str) -> subprocess.CompletedProcess[bytes]:
    try:
        return subprocess.run(  # nosec B603 B607
            ["systemctl", "--user", *args],
            capture_output=True,
            timeout=30.0,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise PlatformError(f"systemctl --user {' '.join(args)} failed: {exc}") from exc


def is_systemd_available() -> bool:
    """
    Return True if systemd user sessions are available on the current system.

    Always returns False on non-Linux platforms.
    """
    if not sys.platform.startswith("linux"):
        return False
    try:
        result = subprocess.run(  # nosec B603 B607
            ["systemctl", "--user", "status"],
            capture_output=True,
            timeout=3.0,
        )
        # 0 = running, 3 = degraded / unit not found: both mean systemd is present
        return result.returncode in (0, 3)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


class SystemdUserService(ServiceSupervisorBackend):
    name = "systemd"

    def unit_path(self) -> Path:
        return systemd_user_dir() / _SERVICE_NAME

    def render(self, exec_path: str) -> str:
        return generate_unit_file(exec_path)

    def install(self, exec_path: str) -> Path:
        if not is_systemd_available():
            raise PlatformError(
                f"systemd user session not available; run '{exec_path} daemon' manually"
            )
        unit_path = self.unit_path()
        unit_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(self.render(exec_path), encoding="utf-8")
        unit_path.chmod(0o644)

        _systemctl("daemon-reload")
        result = _systemctl("enable", "--now", _UNIT_NAME)
        if result.returncode != 0:
            raise PlatformError(
                f"systemctl --user enable --now {_UNIT_NAME} failed: "
                f"{result.stderr.decode(errors='replace').strip()}"
            )
        logger.info("Installed systemd user unit %s", unit_path)
        return unit_path

    def uninstall(self) -> bool:
        unit_path = self.unit_path()
        if not unit_path.exists():
            return False
        result = _systemctl("disable", "--now", _UNIT_NAME)
        if result.returncode != 0:
            logger.warning(
                "systemctl --user disable %s: %s",
                _UNIT_NAME,
                result.stderr.decode(errors="replace").strip(),
            )
        unit_path.unlink(missing_ok=True)
        _systemctl("daemon-reload")
        return True

    def is_running(self) -> bool:
        try:
            return _systemctl("is-active", "--quiet", _UNIT_NAME).returncode == 0
        except PlatformError:
            return False
