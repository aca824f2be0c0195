"""Port block helpers for supactl.

Every local instance receives a block of ten ports derived from one base
value. Consecutive projects are spaced :data:`PORT_INCREMENT` apart, which is
wide enough that the irregular offsets (``-1`` through ``+443``) can never
reach into a neighbouring block.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields

BASE_PORT = 54321
PORT_INCREMENT = 1000
MAX_PORT = 65535

# Offsets from the base port, keyed by the registry field name.
PORT_OFFSETS: dict[str, int] = {
    "api": 0,
    "db": 1,
    "shadow": -1,
    "studio": 2,
    "inbucket": 3,
    "smtp": 4,
    "pop3": 5,
    "pooler": 8,
    "analytics": 6,
    "kong_https": 443,
}


class PortsError(ValueError):
    """Raised when a port block cannot be derived or parsed."""


@dataclass(frozen=True, slots=True)
class Ports:
    """The ten host ports assigned to one instance."""

    api: int
    db: int
    shadow: int
    studio: int
    inbucket: int
    smtp: int
    pop3: int
    pooler: int
    analytics: int
    kong_https: int

    @classmethod
    def from_base(cls, base: int) -> Ports:
        """Derive the full block from *base*."""
        lowest = base + min(PORT_OFFSETS.values())
        highest = base + max(PORT_OFFSETS.values())
        if lowest < 1 or highest > MAX_PORT:
            raise PortsError(
                f"Base port {base} yields ports outside 1-{MAX_PORT} "
                f"({lowest}-{highest})."
            )
        return cls(**{name: base + offset for name, offset in PORT_OFFSETS.items()})

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object]) -> Ports:
        """Parse a block from its registry representation."""
        values: dict[str, int] = {}
        for field in fields(cls):
            value = raw.get(field.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise PortsError(f"Port '{field.name}' must be an integer, got {value!r}.")
            if not 0 < value <= MAX_PORT:
                raise PortsError(f"Port '{field.name}' out of range: {value}.")
            values[field.name] = value
        return cls(**values)

    def to_dict(self) -> dict[str, int]:
        """Return a serialisable representation."""
        return asdict(self)

    def values(self) -> tuple[int, ...]:
        """Return every port in the block."""
        return tuple(getattr(self, field.name) for field in fields(self))

    def overlaps(self, other: Ports) -> bool:
        """Return ``True`` when *other* shares any port with this block."""
        return bool(set(self.values()) & set(other.values()))


__all__ = [
    "BASE_PORT",
    "MAX_PORT",
    "PORT_INCREMENT",
    "PORT_OFFSETS",
    "Ports",
    "PortsError",
]
