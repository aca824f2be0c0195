"""State management helpers."""
from __future__ import annotations

from .registry import REGISTRY_FILENAME, Project, Registry, RegistryStore

__all__ = ["REGISTRY_FILENAME", "Project", "Registry", "RegistryStore"]
