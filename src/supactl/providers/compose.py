"""Docker Compose driver for local instance lifecycle operations."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import DependencyUnavailableError, ExternalCommandFailure, NotFoundError
from ..paths import InstancePaths

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_LINES = 100


@dataclass(slots=True)
class ComposeDriver:
    """Run ``docker compose`` against an instance's ``supabase/docker`` tree.

    Every command uses ``-p <project_id>`` so that instances sharing the
    upstream manifest still get separate compose projects.
    """

    docker_bin: str = "docker"

    def ensure_available(self) -> None:
        """Verify that the docker daemon and the compose plugin respond."""
        checks = (
            ([self.docker_bin, "version"], "docker version"),
            ([self.docker_bin, "compose", "version"], "docker compose version"),
        )
        for args, operation in checks:
            try:
                self._run_command(args, cwd=None, operation=operation)
            except ExternalCommandFailure as exc:
                raise DependencyUnavailableError(
                    exc.message,
                    remediation="Start the Docker daemon and install the compose plugin.",
                ) from exc

    def up(self, project_id: str, directory: str | os.PathLike[str]) -> None:
        """Start the instance in detached mode."""
        paths = self._require_layout(project_id, directory, need_env=True)
        self._compose(project_id, paths, "up", "-d")

    def down(self, project_id: str, directory: str | os.PathLike[str]) -> None:
        """Stop the instance and remove its containers, volumes and orphans."""
        paths = self._require_layout(project_id, directory, need_env=True)
        self._compose(project_id, paths, "down", "-v", "--remove-orphans")

    def restart(self, project_id: str, directory: str | os.PathLike[str]) -> None:
        """Restart every service of the instance."""
        paths = self._require_layout(project_id, directory)
        self._compose(project_id, paths, "restart")

    def logs(
        self,
        project_id: str,
        directory: str | os.PathLike[str],
        *,
        lines: int = DEFAULT_LOG_LINES,
    ) -> str:
        """Return the last *lines* log lines of every service, stderr included."""
        paths = self._require_layout(project_id, directory)
        result = self._compose(project_id, paths, "logs", "--tail", str(lines), merge_stderr=True)
        return result.stdout or ""

    def is_running(self, project_id: str, directory: str | os.PathLike[str]) -> bool:
        """Return ``True`` when compose reports at least one container id.

        Failures of any kind are reported as "not running".
        """
        paths = InstancePaths.for_directory(directory)
        if not paths.docker.is_dir():
            return False
        try:
            result = self._compose(project_id, paths, "ps", "-q")
        except (DependencyUnavailableError, ExternalCommandFailure, OSError) as exc:
            LOGGER.debug("Status probe for %s failed: %s", project_id, exc)
            return False
        return bool((result.stdout or "").strip())

    # ------------------------------------------------------------------
    def _require_layout(
        self,
        project_id: str,
        directory: str | os.PathLike[str],
        *,
        need_env: bool = False,
    ) -> InstancePaths:
        paths = InstancePaths.for_directory(directory)
        if not paths.docker.is_dir():
            raise NotFoundError(
                f"Docker directory not found for '{project_id}': {paths.docker}",
                remediation="Re-provision the instance with `supactl local add`.",
            )
        if need_env and not paths.env_file.is_file():
            raise NotFoundError(
                f".env file not found for '{project_id}': {paths.env_file}",
                remediation="Re-provision the instance with `supactl local add`.",
            )
        return paths

    def _compose(
        self,
        project_id: str,
        paths: InstancePaths,
        *args: str,
        merge_stderr: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, "compose", "-p", project_id, *args]
        return self._run_command(
            command,
            cwd=paths.docker,
            operation=f"docker compose {args[0]} ({project_id})",
            merge_stderr=merge_stderr,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None,
        operation: str,
        merge_stderr: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                cwd=str(cwd) if cwd is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DependencyUnavailableError(
                f"{args[0]} not found: {exc}",
                remediation="Install Docker with the compose plugin and make sure it is on PATH.",
            ) from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ExternalCommandFailure(
                operation,
                f"exit {result.returncode}: {message}",
                returncode=result.returncode,
                output=stderr or stdout,
            )
        return result


__all__ = ["ComposeDriver", "DEFAULT_LOG_LINES"]
