"""Instances managed by a remote SupaControl server."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from ..providers.api_client import ControlPlaneClient
from .base import Instance, InstanceProvider, ProviderKind

CREATED_AT_FALLBACK_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_created_at(value: object) -> datetime | None:
    """Parse an RFC 3339 or ``YYYY-MM-DD HH:MM:SS`` timestamp; ``None`` if neither."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.strptime(text, CREATED_AT_FALLBACK_FORMAT)
    except ValueError:
        return None


def instance_from_record(record: Mapping[str, object]) -> Instance:
    """Normalise an API instance record."""

    def text(key: str) -> str | None:
        value = record.get(key)
        return str(value) if value not in (None, "") else None

    return Instance(
        name=text("name") or "",
        status=text("status") or "unknown",
        studio_url=text("studio_url") or "",
        api_url=text("api_url") or "",
        created_at=parse_created_at(record.get("created_at")),
        kong_url=text("kong_url"),
        anon_key=text("anon_key"),
        service_key=text("service_key"),
        database_url=text("database_url"),
    )


@dataclass(slots=True)
class RemoteProvider(InstanceProvider):
    """Delegate every operation to the control-plane client."""

    client: ControlPlaneClient
    kind: ProviderKind = field(default=ProviderKind.REMOTE, init=False)

    @classmethod
    def connect(cls, server_url: str, api_key: str, *, timeout: float = 30.0) -> RemoteProvider:
        """Build a provider for *server_url* authenticated with *api_key*."""
        return cls(ControlPlaneClient(server_url, api_key, timeout=timeout))

    def validate_connection(self) -> None:
        """Confirm that the server accepts the configured API key."""
        self.client.login_test()

    def list_instances(self) -> list[Instance]:
        return [instance_from_record(record) for record in self.client.list_instances()]

    def get_instance(self, name: str) -> Instance:
        return instance_from_record(self.client.get_instance(name))

    def create_instance(self, name: str) -> Instance:
        return instance_from_record(self.client.create_instance(name))

    def delete_instance(self, name: str) -> None:
        self.client.delete_instance(name)

    def start_instance(self, name: str) -> None:
        self.client.start_instance(name)

    def stop_instance(self, name: str) -> None:
        self.client.stop_instance(name)

    def restart_instance(self, name: str) -> None:
        self.client.restart_instance(name)

    def logs(self, name: str, lines: int) -> str:
        return self.client.get_logs(name, lines)


__all__ = ["RemoteProvider", "instance_from_record", "parse_created_at"]
