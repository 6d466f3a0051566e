"""
macOS exec events via ``eslogger exec``.

eslogger writes one JSON document per Endpoint Security event. Only the
exec target's executable path is used::

    {"event": {"exec": {"target": {"executable": {"path": "/opt/homebrew/bin/rg"}}}}, ...}

eslogger requires root and Full Disk Access for the launching process.
"""

from __future__ import annotations

from pydantic import BaseModel, ValidationError

from dustbin.os.monitor.base import EventSource


class _Executable(BaseModel):
    path: str


class _Target(BaseModel):
    executable: _Executable


class _ExecInfo(BaseModel):
    target: _Target


class _Event(BaseModel):
    exec: _ExecInfo | None = None


class EsloggerEvent(BaseModel):
    event: _Event

    @property
    def executable_path(self) -> str | None:
        return self.event.exec.target.executable.path if self.event.exec else None


class EsloggerSource(EventSource):
    name = "eslogger"

    def command(self) -> list[str]:
        return ["eslogger", "exec"]

    def parse_line(self, line: str) -> str | None:
        try:
            event = EsloggerEvent.model_validate_json(line)
        except ValidationError as exc:
            raise ValueError(f"not an eslogger event: {exc.error_count()} error(s)") from exc
        return event.executable_path

    def setup_hint(self) -> str:
        return (
            "eslogger needs root and Full Disk Access. Grant Full Disk Access to "
            "your terminal (System Settings > Privacy & Security) and run the "
            "daemon as root."
        )
