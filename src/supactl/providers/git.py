"""Acquire the upstream Supabase source tree with git."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import AlreadyExistsError, DependencyUnavailableError, ExternalCommandFailure
from ..paths import InstancePaths

LOGGER = logging.getLogger(__name__)

UPSTREAM_REPO_URL = "https://github.com/supabase/supabase"


@dataclass(slots=True)
class SourceFetcher:
    """Shallow-clone the upstream repository into a fresh instance directory."""

    repo_url: str = UPSTREAM_REPO_URL
    git_bin: str = "git"

    def fetch(self, directory: str | os.PathLike[str]) -> InstancePaths:
        """Clone into ``<directory>/supabase`` and return the resulting layout.

        *directory* must not exist yet. On any failure the directory created
        here is removed again; an existing directory is never modified.
        """
        paths = InstancePaths.for_directory(directory)
        if paths.root.exists():
            raise AlreadyExistsError(
                f"Directory already exists: {paths.root}",
                remediation="Choose a new directory or remove the existing one first.",
            )

        paths.root.mkdir(parents=True)
        try:
            self._clone(paths.checkout)
            if not paths.docker.is_dir():
                raise ExternalCommandFailure(
                    "git clone",
                    f"checkout has no docker directory at {paths.docker}",
                    remediation=f"Verify that {self.repo_url} still ships supabase/docker.",
                )
        except BaseException:
            self._discard(paths.root)
            raise
        LOGGER.debug("Cloned %s into %s", self.repo_url, paths.checkout)
        return paths

    # ------------------------------------------------------------------
    def _clone(self, target: Path) -> None:
        args = [self.git_bin, "clone", "--depth", "1", self.repo_url, str(target)]
        try:
            result = subprocess.run(  # noqa: S603, S607
                args,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DependencyUnavailableError(
                f"{self.git_bin} not found: {exc}",
                remediation="Install git and make sure it is on PATH.",
            ) from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ExternalCommandFailure(
                "git clone",
                f"exit {result.returncode}: {message}",
                returncode=result.returncode,
                output=stderr or stdout,
            )

    @staticmethod
    def _discard(root: Path) -> None:
        try:
            shutil.rmtree(root)
        except OSError as exc:
            LOGGER.warning("Failed to remove partial checkout %s: %s", root, exc)


__all__ = ["SourceFetcher", "UPSTREAM_REPO_URL"]
