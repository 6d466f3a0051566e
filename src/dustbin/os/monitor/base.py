"""
Event source interface.

An event source describes a privileged, line-oriented child process that
reports executables as they are exec'd. The supervisor owns the process;
the source only says how to start it and how to read one line of output.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EventSource(ABC):
    """One platform exec-tracing facility."""

    name: str = "source"

    @abstractmethod
    def command(self) -> list[str]:
        """Argument vector that starts the tracing child process."""
        ...

    @abstractmethod
    def parse_line(self, line: str) -> str | None:
        """Extract the executed path from one output line.

        Returns None for well-formed lines that are not exec events.
        Raises ValueError for lines that cannot be parsed at all.
        """
        ...

    def setup_hint(self) -> str:
        """Human-readable hint shown when the tool cannot be started."""
        return ""
