"""Targeted rewrites of the upstream Supabase configuration files.

The ``.env`` template, ``docker-compose.yml`` and ``config.toml`` belong to the
upstream project, so they are edited with line-oriented regular expressions
instead of being parsed and re-serialised. Anything not explicitly rewritten
(comments, ordering, quoting, line endings) survives byte for byte, and a file
that already carries the target values is left untouched on disk.
"""
from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path

from .credentials import Secrets
from .errors import NotFoundError
from .ports import Ports

ENV_FILE_MODE = 0o600
DEFAULT_DASHBOARD_USERNAME = "supabase"

ENV_KEYS = (
    "POSTGRES_PASSWORD",
    "JWT_SECRET",
    "ANON_KEY",
    "SERVICE_ROLE_KEY",
    "DASHBOARD_USERNAME",
    "DASHBOARD_PASSWORD",
    "VAULT_ENC_KEY",
    "KONG_HTTP_PORT",
    "KONG_HTTPS_PORT",
    "POSTGRES_PORT",
)

# Container port -> Ports field holding the host-side replacement.
COMPOSE_PORT_FIELDS: dict[int, str] = {
    8000: "api",
    5432: "db",
    3000: "studio",
    9000: "inbucket",
    4000: "analytics",
    8443: "kong_https",
}

# config.toml section -> {key: Ports field}. "" is the root table.
SECTION_PORT_FIELDS: dict[str, dict[str, str]] = {
    "": {"port": "api"},
    "api": {"port": "api"},
    "db": {"port": "db", "shadow_port": "shadow"},
    "studio": {"port": "studio"},
    "inbucket": {"port": "inbucket", "smtp_port": "smtp", "pop3_port": "pop3"},
    "db.pooler": {"port": "pooler"},
    "analytics": {"port": "analytics"},
}

_CONTAINER_NAME = re.compile(
    r"^(?P<prefix>.*?container_name:)[ \t]*"
    r"(?P<quote>['\"]?)(?P<name>[^'\"\s#]+)(?P=quote)(?P<rest>.*)$"
)
_PORT_MAPPINGS = {
    container_port: re.compile(
        rf"^(?P<head>\s*-\s*['\"]?)\d+(?P<tail>:{container_port}(?!\d)['\"]?.*)$"
    )
    for container_port in COMPOSE_PORT_FIELDS
}
_SECTION_HEADER = re.compile(r"^\s*\[+\s*(?P<name>[^\]]*?)\s*\]+")
_ASSIGNMENT = re.compile(
    r"^(?P<indent>\s*)(?P<key>[A-Za-z0-9_]+)(?P<sep>\s*=\s*)"
    r"(?P<value>[^#]*?)(?P<trail>\s*(?:#.*)?)$"
)


def env_substitutions(
    secrets: Secrets,
    ports: Ports,
    *,
    dashboard_username: str = DEFAULT_DASHBOARD_USERNAME,
) -> dict[str, str]:
    """Return the ``.env`` values for an instance, keyed in :data:`ENV_KEYS` order."""
    return {
        "POSTGRES_PASSWORD": secrets.postgres_password,
        "JWT_SECRET": secrets.jwt_secret,
        "ANON_KEY": secrets.anon_key,
        "SERVICE_ROLE_KEY": secrets.service_role_key,
        "DASHBOARD_USERNAME": dashboard_username,
        "DASHBOARD_PASSWORD": secrets.dashboard_password,
        "VAULT_ENC_KEY": secrets.vault_enc_key,
        "KONG_HTTP_PORT": str(ports.api),
        "KONG_HTTPS_PORT": str(ports.kong_https),
        "POSTGRES_PORT": str(ports.db),
    }


# ----------------------------------------------------------------------
# .env
# ----------------------------------------------------------------------
def rewrite_env_text(text: str, values: Mapping[str, str]) -> str:
    """Replace the first ``KEY=...`` line for each key in *values*.

    Keys missing from *text* are not appended.
    """
    for key, value in values.items():
        pattern = re.compile(rf"^{re.escape(key)}=[^\r\n]*", re.MULTILINE)
        replacement = f"{key}={value}"
        text = pattern.sub(lambda _match: replacement, text, count=1)
    return text


def rewrite_env_file(path: Path, values: Mapping[str, str]) -> bool:
    """Rewrite *path* in place and return ``True`` when its content changed."""
    original = _read_text(path)
    updated = rewrite_env_text(original, values)
    changed = updated != original
    if changed:
        _atomic_write(path, updated, mode=ENV_FILE_MODE)
    else:
        os.chmod(path, ENV_FILE_MODE)
    return changed


def materialize_env_file(example: Path, target: Path, values: Mapping[str, str]) -> Path:
    """Copy the *example* template to *target* and fill in *values*."""
    if not example.is_file():
        raise NotFoundError(
            f".env.example not found: {example}",
            remediation="The upstream checkout looks incomplete; remove it and retry.",
        )
    template = _read_text(example)
    _atomic_write(target, rewrite_env_text(template, values), mode=ENV_FILE_MODE)
    return target


# ----------------------------------------------------------------------
# docker-compose.yml
# ----------------------------------------------------------------------
def rewrite_compose_text(text: str, project_id: str, ports: Ports) -> str:
    """Namespace container names and remap published ports for *project_id*."""

    def transform(line: str) -> str:
        if "container_name:" in line:
            line = _prefix_container_name(line, project_id)
        for container_port, field_name in COMPOSE_PORT_FIELDS.items():
            match = _PORT_MAPPINGS[container_port].match(line)
            if match:
                host_port = getattr(ports, field_name)
                line = f"{match['head']}{host_port}{match['tail']}"
        return line

    return _map_lines(text, transform)


def rewrite_compose_file(path: Path, project_id: str, ports: Ports) -> bool:
    """Rewrite the compose manifest at *path*; return ``True`` when it changed."""
    original = _read_text(path)
    updated = rewrite_compose_text(original, project_id, ports)
    if updated == original:
        return False
    _atomic_write(path, updated, mode=_current_mode(path))
    return True


def _prefix_container_name(line: str, project_id: str) -> str:
    match = _CONTAINER_NAME.match(line)
    if not match:
        return line
    name = match["name"]
    if name.startswith(f"{project_id}-"):
        return line
    quote = match["quote"]
    return f"{match['prefix']} {quote}{project_id}-{name}{quote}{match['rest']}"


# ----------------------------------------------------------------------
# config.toml
# ----------------------------------------------------------------------
def rewrite_config_toml_text(text: str, project_id: str, ports: Ports) -> str:
    """Rewrite ``project_id`` and the section-scoped port keys in *text*."""
    section = ""

    def transform(line: str) -> str:
        nonlocal section
        if line.lstrip().startswith("["):
            header = _SECTION_HEADER.match(line)
            if header:
                section = header["name"]
            return line

        match = _ASSIGNMENT.match(line)
        if not match:
            return line
        key = match["key"]
        if key == "project_id":
            value = f'"{project_id}"'
        else:
            field_name = SECTION_PORT_FIELDS.get(section, {}).get(key)
            if field_name is None:
                return line
            value = str(getattr(ports, field_name))
        return f"{match['indent']}{key}{match['sep']}{value}{match['trail']}"

    return _map_lines(text, transform)


def rewrite_config_toml(path: Path, project_id: str, ports: Ports) -> bool:
    """Rewrite ``config.toml`` when present; a missing file is not an error."""
    if not path.exists():
        return False
    original = _read_text(path)
    updated = rewrite_config_toml_text(original, project_id, ports)
    if updated == original:
        return False
    _atomic_write(path, updated, mode=_current_mode(path))
    return True


# ----------------------------------------------------------------------
# Internal helpers
# ----------------------------------------------------------------------
def _map_lines(text: str, transform: Callable[[str], str]) -> str:
    """Apply *transform* to each line body, keeping ``\\n``/``\\r\\n`` endings."""
    output: list[str] = []
    for line in text.split("\n"):
        carriage = line.endswith("\r")
        body = line[:-1] if carriage else line
        output.append(transform(body) + ("\r" if carriage else ""))
    return "\n".join(output)


def _read_text(path: Path) -> str:
    # Bytes keep the original line endings intact.
    return path.read_bytes().decode("utf-8")


def _current_mode(path: Path) -> int:
    return path.stat().st_mode & 0o777


def _atomic_write(path: Path, text: str, *, mode: int) -> None:
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "wb") as handle:
            handle.write(text.encode("utf-8"))
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


__all__ = [
    "COMPOSE_PORT_FIELDS",
    "ENV_KEYS",
    "SECTION_PORT_FIELDS",
    "env_substitutions",
    "materialize_env_file",
    "rewrite_compose_file",
    "rewrite_compose_text",
    "rewrite_config_toml",
    "rewrite_config_toml_text",
    "rewrite_env_file",
    "rewrite_env_text",
]
