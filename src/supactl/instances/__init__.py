"""Instance providers: one interface over local and remote instances."""
from __future__ import annotations

from .base import Instance, InstanceProvider, ProviderKind
from .local import LocalProvider, resolve_host_address
from .remote import RemoteProvider

__all__ = [
    "Instance",
    "InstanceProvider",
    "LocalProvider",
    "ProviderKind",
    "RemoteProvider",
    "resolve_host_address",
]
