"""Service supervisor interface: keep ``dustbin daemon`` running under the init system."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class ServiceSupervisorBackend(ABC):
    """Interface for installing the daemon as a managed service."""

    name: str = "service"

    @abstractmethod
    def unit_path(self) -> Path:
        """Where the service definition is written."""
        ...

    @abstractmethod
    def render(self, exec_path: str) -> str:
        """Service definition text that runs ``<exec_path> daemon``."""
        ...

    @abstractmethod
    def install(self, exec_path: str) -> Path:
        """Write, enable and start the service. Returns the definition path."""
        ...

    @abstractmethod
    def uninstall(self) -> bool:
        """Stop and remove the service. Returns False if it was not installed."""
        ...

    @abstractmethod
    def is_running(self) -> bool:
        """Check whether the supervised daemon is currently running."""
        ...

    def is_installed(self) -> bool:
        return self.unit_path().exists()
