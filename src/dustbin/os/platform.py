"""
Platform switch.

The only place that branches on the operating system. Everything else asks
for a ``PlatformBackends`` bundle and talks to the interfaces.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass

from dustbin.core.exceptions import PlatformError
from dustbin.os.deps.base import DylibIntrospector
from dustbin.os.monitor.base import EventSource
from dustbin.os.service.base import ServiceSupervisorBackend


@dataclass(frozen=True)
class PlatformBackends:
    platform: str
    event_source: EventSource
    introspector: DylibIntrospector
    service: ServiceSupervisorBackend


def select_backends(platform: str | None = None) -> PlatformBackends:
    """Backends for *platform* (defaults to ``sys.platform``)."""
    platform = platform or sys.platform

    if platform == "darwin":
        from dustbin.os.deps.macos import OtoolIntrospector
        from dustbin.os.monitor.macos import EsloggerSource
        from dustbin.os.service.launchd import LaunchdService

        return PlatformBackends("macos", EsloggerSource(), OtoolIntrospector(), LaunchdService())

    if platform.startswith("linux"):
        from dustbin.os.deps.linux import LddIntrospector
        from dustbin.os.monitor.linux import FatraceSource
        from dustbin.os.service.systemd import SystemdUserService

        return PlatformBackends("linux", FatraceSource(), LddIntrospector(), SystemdUserService())

    raise PlatformError(f"Unsupported platform: {platform} (Dustbin runs on Linux and macOS)")
