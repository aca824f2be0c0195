"""Provisioning of new local Supabase instances.

A run moves through fixed stages::

    validate_id -> acquire_source -> generate_secrets -> allocate_ports
        -> write_env_file -> rewrite_manifests -> persist_registry -> done

Every side effect is recorded in a :class:`RollbackJournal`. If a stage fails,
the journal is unwound newest-first and the original failure is re-raised as
:class:`~supactl.errors.ProvisioningStepFailure`. The registry file is only
written in ``persist_registry``, so a failed run never leaves a registry
entry behind.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .credentials import Secrets, generate_secrets
from .errors import AlreadyExistsError, ProvisioningStepFailure, ValidationError
from .paths import InstancePaths
from .providers.git import SourceFetcher
from .rewriters import (
    DEFAULT_DASHBOARD_USERNAME,
    env_substitutions,
    materialize_env_file,
    rewrite_compose_file,
    rewrite_config_toml,
)
from .state.registry import Project, RegistryStore

if TYPE_CHECKING:  # pragma: no cover
    from .logging import OperationScope

LOGGER = logging.getLogger(__name__)

PROJECT_ID_PATTERN = re.compile(r"[a-z0-9][a-z0-9_-]*")


class ProvisioningStage(str, Enum):
    """Ordered stages of a provisioning run."""

    VALIDATE_ID = "validate_id"
    ACQUIRE_SOURCE = "acquire_source"
    GENERATE_SECRETS = "generate_secrets"
    ALLOCATE_PORTS = "allocate_ports"
    WRITE_ENV_FILE = "write_env_file"
    REWRITE_MANIFESTS = "rewrite_manifests"
    PERSIST_REGISTRY = "persist_registry"
    DONE = "done"


def validate_project_id(project_id: str) -> str:
    """Return *project_id* unchanged or raise :class:`ValidationError`."""
    if not isinstance(project_id, str) or not PROJECT_ID_PATTERN.fullmatch(project_id):
        raise ValidationError(
            f"Invalid project id {project_id!r}.",
            remediation=(
                "Use lowercase letters, digits, '-' and '_', starting with a letter or digit."
            ),
        )
    return project_id


@dataclass(slots=True)
class RollbackJournal:
    """Undo actions recorded in the order their side effects happened."""

    entries: list[tuple[str, Callable[[], None]]] = field(default_factory=list)

    def record(self, description: str, undo: Callable[[], None]) -> None:
        """Register *undo* to reverse the side effect named *description*."""
        self.entries.append((description, undo))

    def unwind(self) -> list[str]:
        """Run every undo action newest-first and return cleanup warnings.

        A failing undo action never stops the remaining ones.
        """
        warnings: list[str] = []
        while self.entries:
            description, undo = self.entries.pop()
            try:
                undo()
            except Exception as exc:  # noqa: BLE001 - cleanup must continue
                message = f"{description}: {exc}"
                LOGGER.warning("Rollback step failed: %s", message)
                warnings.append(message)
        return warnings

    def clear(self) -> None:
        """Forget every recorded action once the run has committed."""
        self.entries.clear()


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    project_id: str
    project: Project
    secrets: Secrets
    paths: InstancePaths
    stages: tuple[ProvisioningStage, ...]
    warnings: tuple[str, ...] = ()

    @property
    def env_file(self) -> Path:
        """Return the ``.env`` file written for the instance."""
        return self.paths.env_file


@dataclass(slots=True)
class Provisioner:
    """Create a local instance from the upstream source tree."""

    store: RegistryStore
    fetcher: SourceFetcher = field(default_factory=SourceFetcher)
    secret_factory: Callable[[], Secrets] = generate_secrets
    dashboard_username: str = DEFAULT_DASHBOARD_USERNAME

    def provision(
        self,
        project_id: str,
        directory: str | os.PathLike[str],
        *,
        op: OperationScope | None = None,
    ) -> ProvisionResult:
        """Provision *project_id* into *directory* and persist it in the registry."""
        validate_project_id(project_id)
        _step(op, ProvisioningStage.VALIDATE_ID)

        registry = self.store.load()
        if registry.exists(project_id):
            raise AlreadyExistsError(
                f"Project '{project_id}' already exists.",
                remediation="Pick a different project id or remove the existing one first.",
            )

        root = Path(directory).expanduser().absolute()
        journal = RollbackJournal()
        completed: list[ProvisioningStage] = [ProvisioningStage.VALIDATE_ID]
        warnings: list[str] = []
        stage = ProvisioningStage.ACQUIRE_SOURCE

        try:
            paths = self.fetcher.fetch(root)
            journal.record(f"remove {paths.root}", lambda: shutil.rmtree(paths.root))
            completed.append(stage)
            _step(op, stage, detail=str(paths.checkout))

            stage = ProvisioningStage.GENERATE_SECRETS
            secrets = self.secret_factory()
            completed.append(stage)
            _step(op, stage)

            stage = ProvisioningStage.ALLOCATE_PORTS
            project = registry.add(project_id, paths.root)
            journal.record(
                f"release ports of '{project_id}'",
                lambda: registry.remove(project_id),
            )
            completed.append(stage)
            _step(op, stage, detail=f"api={project.ports.api}")

            stage = ProvisioningStage.WRITE_ENV_FILE
            values = env_substitutions(
                secrets,
                project.ports,
                dashboard_username=self.dashboard_username,
            )
            materialize_env_file(paths.env_example, paths.env_file, values)
            completed.append(stage)
            _step(op, stage, detail=str(paths.env_file))

            stage = ProvisioningStage.REWRITE_MANIFESTS
            if paths.compose_file.exists():
                rewrite_compose_file(paths.compose_file, project_id, project.ports)
            else:
                message = f"docker-compose.yml not found at {paths.compose_file}"
                LOGGER.warning("%s", message)
                warnings.append(message)
            rewrite_config_toml(paths.config_toml, project_id, project.ports)
            completed.append(stage)
            _step(op, stage)

            stage = ProvisioningStage.PERSIST_REGISTRY
            self.store.save(registry)
            completed.append(stage)
            _step(op, stage, detail=str(self.store.path))
        except Exception as exc:  # noqa: BLE001 - every failure must unwind
            cleanup_warnings = journal.unwind()
            _step(op, stage, status="error", detail=str(exc))
            raise ProvisioningStepFailure(
                project_id,
                stage.value,
                exc,
                cleanup_warnings=tuple(cleanup_warnings),
            ) from exc

        journal.clear()
        completed.append(ProvisioningStage.DONE)
        return ProvisionResult(
            project_id=project_id,
            project=project,
            secrets=secrets,
            paths=paths,
            stages=tuple(completed),
            warnings=tuple(warnings),
        )


def _step(
    op: OperationScope | None,
    stage: ProvisioningStage,
    *,
    status: str = "success",
    detail: str | None = None,
) -> None:
    if op is not None:
        op.add_step(f"provision.{stage.value}", status=status, detail=detail)


__all__ = [
    "PROJECT_ID_PATTERN",
    "ProvisionResult",
    "Provisioner",
    "ProvisioningStage",
    "RollbackJournal",
    "validate_project_id",
]
