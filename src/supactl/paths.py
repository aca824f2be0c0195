"""Filesystem layout of a provisioned local instance."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

CHECKOUT_DIRNAME = "supabase"


@dataclass(frozen=True, slots=True)
class InstancePaths:
    """Filesystem paths associated with an instance directory."""

    root: Path
    checkout: Path
    docker: Path
    env_file: Path
    env_example: Path
    compose_file: Path
    config_toml: Path

    @classmethod
    def for_directory(cls, directory: str | os.PathLike[str]) -> InstancePaths:
        """Derive the layout rooted at *directory*."""
        root = Path(directory).expanduser()
        checkout = root / CHECKOUT_DIRNAME
        docker = checkout / "docker"
        return cls(
            root=root,
            checkout=checkout,
            docker=docker,
            env_file=docker / ".env",
            env_example=docker / ".env.example",
            compose_file=docker / "docker-compose.yml",
            config_toml=checkout / "supabase" / "config.toml",
        )


__all__ = ["CHECKOUT_DIRNAME", "InstancePaths"]
