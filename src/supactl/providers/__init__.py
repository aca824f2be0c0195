"""Wrappers around the external tools supactl drives."""
from __future__ import annotations

from .api_client import ControlPlaneClient
from .compose import ComposeDriver
from .git import SourceFetcher

__all__ = [
    "ComposeDriver",
    "ControlPlaneClient",
    "SourceFetcher",
]
