"""Instances provisioned on this machine and driven by Docker Compose."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

from ..errors import AlreadyInDesiredStateError, UnsupportedOperationError
from ..providers.compose import ComposeDriver
from ..state.registry import Project, RegistryStore
from .base import STATUS_RUNNING, STATUS_STOPPED, Instance, InstanceProvider, ProviderKind

LOGGER = logging.getLogger(__name__)

FALLBACK_HOST = "localhost"


def resolve_host_address(hostname_bin: str = "hostname") -> str:
    """Return the first address printed by ``hostname -I`` or ``localhost``."""
    try:
        result = subprocess.run(  # noqa: S603, S607
            [hostname_bin, "-I"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        LOGGER.debug("hostname -I unavailable: %s", exc)
        return FALLBACK_HOST
    if result.returncode != 0:
        return FALLBACK_HOST
    fields = (result.stdout or "").split()
    return fields[0] if fields else FALLBACK_HOST


@dataclass(slots=True)
class LocalProvider(InstanceProvider):
    """Serve instances from the local registry.

    The registry is reloaded on every call so that changes made by other
    invocations are always visible.
    """

    store: RegistryStore
    compose: ComposeDriver = field(default_factory=ComposeDriver)
    host_address: str | None = None
    host_resolver: Callable[[], str] = resolve_host_address
    kind: ProviderKind = field(default=ProviderKind.LOCAL, init=False)

    def list_instances(self) -> list[Instance]:
        """Return every registered instance, sorted by id."""
        registry = self.store.load()
        host = self._host()
        return [self._to_instance(name, project, host) for name, project in registry]

    def get_instance(self, name: str) -> Instance:
        """Return the registered instance *name*."""
        project = self.store.load().get(name)
        return self._to_instance(name, project, self._host())

    def create_instance(self, name: str) -> Instance:
        """Local instances need a target directory; see ``supactl local add``."""
        raise UnsupportedOperationError(
            f"Creating local instance '{name}' requires a directory.",
            remediation=f"Run `supactl local add {name}` instead.",
        )

    def delete_instance(self, name: str) -> None:
        """Forget *name*; its directory and containers are left in place."""
        registry = self.store.load()
        registry.remove(name)
        self.store.save(registry)

    def start_instance(self, name: str) -> None:
        """Bring *name* up unless it is already running."""
        project = self.store.load().get(name)
        if self.compose.is_running(name, project.directory):
            raise AlreadyInDesiredStateError(name, STATUS_RUNNING)
        self.compose.up(name, project.directory)

    def stop_instance(self, name: str) -> None:
        """Take *name* down unless it is already stopped."""
        project = self.store.load().get(name)
        if not self.compose.is_running(name, project.directory):
            raise AlreadyInDesiredStateError(name, STATUS_STOPPED)
        self.compose.down(name, project.directory)

    def restart_instance(self, name: str) -> None:
        """Restart every service of *name*."""
        project = self.store.load().get(name)
        self.compose.restart(name, project.directory)

    def logs(self, name: str, lines: int) -> str:
        """Return the last *lines* compose log lines of *name*."""
        project = self.store.load().get(name)
        return self.compose.logs(name, project.directory, lines=lines)

    # ------------------------------------------------------------------
    def _host(self) -> str:
        if self.host_address:
            return self.host_address
        return self.host_resolver()

    def _to_instance(self, name: str, project: Project, host: str) -> Instance:
        running = self.compose.is_running(name, project.directory)
        return Instance(
            name=name,
            status=STATUS_RUNNING if running else STATUS_STOPPED,
            studio_url=f"http://{host}:{project.ports.studio}",
            api_url=f"http://{host}:{project.ports.api}/rest/v1/",
            directory=project.directory,
            db_port=project.ports.db,
        )


__all__ = ["FALLBACK_HOST", "LocalProvider", "resolve_host_address"]
