"""Common instance model and provider interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"


class ProviderKind(str, Enum):
    """Where an instance lives."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class Instance:
    """A Supabase instance as seen through either provider.

    Fields only one provider can fill stay ``None`` for the other: remote
    instances carry keys and a database URL, local ones a directory and the
    database port.
    """

    name: str
    status: str
    studio_url: str
    api_url: str
    created_at: datetime | None = None
    kong_url: str | None = None
    anon_key: str | None = None
    service_key: str | None = None
    database_url: str | None = None
    directory: str | None = None
    db_port: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation without empty fields."""
        data: dict[str, object] = {
            "name": self.name,
            "status": self.status,
            "studio_url": self.studio_url,
            "api_url": self.api_url,
        }
        optional = {
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "kong_url": self.kong_url,
            "anon_key": self.anon_key,
            "service_key": self.service_key,
            "database_url": self.database_url,
            "directory": self.directory,
            "db_port": self.db_port,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


class InstanceProvider(ABC):
    """Lifecycle operations shared by local and remote instances."""

    kind: ProviderKind

    @abstractmethod
    def list_instances(self) -> list[Instance]:
        """Return every known instance."""

    @abstractmethod
    def get_instance(self, name: str) -> Instance:
        """Return *name* or raise :class:`~supactl.errors.NotFoundError`."""

    @abstractmethod
    def create_instance(self, name: str) -> Instance:
        """Create *name* and return it."""

    @abstractmethod
    def delete_instance(self, name: str) -> None:
        """Delete *name*."""

    @abstractmethod
    def start_instance(self, name: str) -> None:
        """Start *name*."""

    @abstractmethod
    def stop_instance(self, name: str) -> None:
        """Stop *name*."""

    @abstractmethod
    def restart_instance(self, name: str) -> None:
        """Restart *name*."""

    @abstractmethod
    def logs(self, name: str, lines: int) -> str:
        """Return the last *lines* log lines of *name*."""


__all__ = [
    "Instance",
    "InstanceProvider",
    "ProviderKind",
    "STATUS_RUNNING",
    "STATUS_STOPPED",
]
