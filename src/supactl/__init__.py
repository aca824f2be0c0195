"""supactl: provision and drive self-hosted Supabase instances.

Only version metadata lives here so that importing the package stays cheap for
the CLI entry point and for packaging tools.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# Keep in sync with ``pyproject.toml``.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the installed supactl version string."""
    return __version__
