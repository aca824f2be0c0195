"""Helpers for interacting with the supactl project registry.

The registry (``~/.supascale_database.json`` by default) maps each local
instance id to its directory and port block, plus the watermark used to hand
out the next block. It is loaded fresh at the start of every operation,
mutated in memory and written back atomically by the caller; the in-memory
:class:`Registry` never persists itself, so a failed operation can discard
its changes simply by not saving.
"""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import AlreadyExistsError, NotFoundError, StateRegistryError
from ..ports import BASE_PORT, PORT_INCREMENT, Ports, PortsError

REGISTRY_FILENAME = ".supascale_database.json"
REGISTRY_MODE = 0o600


@dataclass(frozen=True, slots=True)
class Project:
    """A provisioned local instance."""

    directory: str
    ports: Ports

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"directory": self.directory, "ports": self.ports.to_dict()}

    @classmethod
    def from_mapping(cls, project_id: str, raw: object) -> Project:
        """Parse a registry entry for *project_id*."""
        if not isinstance(raw, Mapping):
            raise StateRegistryError(f"Project '{project_id}' must be a mapping.")
        directory = raw.get("directory")
        if not isinstance(directory, str) or not directory.strip():
            raise StateRegistryError(f"Project '{project_id}' is missing 'directory'.")
        ports_raw = raw.get("ports")
        if not isinstance(ports_raw, Mapping):
            raise StateRegistryError(f"Project '{project_id}' is missing 'ports'.")
        try:
            ports = Ports.from_mapping(ports_raw)
        except PortsError as exc:
            raise StateRegistryError(f"Project '{project_id}' has invalid ports: {exc}") from exc
        return cls(directory=directory, ports=ports)


@dataclass(slots=True)
class Registry:
    """In-memory view of the registry file."""

    projects: dict[str, Project] = field(default_factory=dict)
    last_port_assigned: int = BASE_PORT

    @classmethod
    def empty(cls, base_port: int = BASE_PORT) -> Registry:
        """Return a registry with no projects seeded at *base_port*."""
        return cls(projects={}, last_port_assigned=base_port)

    def __iter__(self) -> Iterator[tuple[str, Project]]:
        return iter(sorted(self.projects.items()))

    def exists(self, project_id: str) -> bool:
        """Return ``True`` when *project_id* is registered."""
        return project_id in self.projects

    def get(self, project_id: str) -> Project:
        """Return the project registered as *project_id*."""
        try:
            return self.projects[project_id]
        except KeyError:
            raise NotFoundError(
                f"Project '{project_id}' not found.",
                remediation="Run `supactl local list` to see registered projects.",
            ) from None

    def add(self, project_id: str, directory: str | os.PathLike[str]) -> Project:
        """Register *project_id* at *directory* and allocate its port block.

        The caller is responsible for saving the registry afterwards.
        """
        if self.exists(project_id):
            raise AlreadyExistsError(
                f"Project '{project_id}' already exists.",
                remediation="Pick a different project id or remove the existing one first.",
            )

        base = self.last_port_assigned
        try:
            ports = Ports.from_base(base)
            # A hand-edited watermark could point into an existing block.
            while any(ports.overlaps(project.ports) for project in self.projects.values()):
                base += PORT_INCREMENT
                ports = Ports.from_base(base)
        except PortsError as exc:
            raise StateRegistryError(
                f"Unable to allocate ports for '{project_id}': {exc}",
                remediation="Remove unused projects or lower ports.base in the configuration.",
            ) from exc

        project = Project(directory=os.fspath(directory), ports=ports)
        self.projects[project_id] = project
        self.last_port_assigned = base + PORT_INCREMENT
        return project

    def remove(self, project_id: str) -> Project:
        """Drop *project_id* from the registry without touching its directory."""
        project = self.get(project_id)
        del self.projects[project_id]
        return project

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON document stored on disk."""
        return {
            "projects": {
                project_id: project.to_dict()
                for project_id, project in sorted(self.projects.items())
            },
            "last_port_assigned": self.last_port_assigned,
        }

    @classmethod
    def from_mapping(cls, raw: object) -> Registry:
        """Parse the on-disk JSON document."""
        if not isinstance(raw, Mapping):
            raise StateRegistryError("Registry must contain a JSON object at the top level.")

        projects_raw = raw.get("projects")
        if projects_raw is None:
            projects_raw = {}
        if not isinstance(projects_raw, Mapping):
            raise StateRegistryError("Registry 'projects' must be an object.")
        projects = {
            str(project_id): Project.from_mapping(str(project_id), entry)
            for project_id, entry in projects_raw.items()
        }

        watermark = raw.get("last_port_assigned")
        if isinstance(watermark, bool) or not isinstance(watermark, int):
            raise StateRegistryError(
                f"Registry 'last_port_assigned' must be an integer, got {watermark!r}."
            )
        return cls(projects=projects, last_port_assigned=watermark)


@dataclass(frozen=True)
class RegistryStore:
    """Load and save the registry file."""

    path: Path
    base_port: int = BASE_PORT

    def __post_init__(self) -> None:
        """Normalise the path after initialisation."""
        object.__setattr__(self, "path", Path(self.path).expanduser())

    def load(self) -> Registry:
        """Read the registry, returning an empty one when the file is absent."""
        if not self.path.exists():
            return Registry.empty(self.base_port)
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {self.path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateRegistryError(
                f"Failed to parse registry file {self.path}: {exc}",
                remediation="Fix or move the file aside; it is not valid JSON.",
            ) from exc
        return Registry.from_mapping(data)

    def save(self, registry: Registry) -> None:
        """Atomically write *registry* readable by the owning user only."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(registry.to_dict(), indent=2) + "\n"

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.chmod(tmp_path, REGISTRY_MODE)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["Project", "Registry", "RegistryStore", "REGISTRY_FILENAME"]
