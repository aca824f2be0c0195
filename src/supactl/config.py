"""Configuration loader for supactl.

Values are merged from several sources, later ones winning:

1. Built-in defaults.
2. ``~/.config/supactl/config.yml`` (or an override path).
3. Environment variables prefixed with ``SUPACTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export SUPACTL_PORTS__BASE=60321
    export SUPACTL_CONTEXTS__PROD__API_KEY=sk-...

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.

Contexts select where instance commands go. The ``local`` context always
exists and drives Docker on this machine; any other context names a remote
SupaControl server and the API key used to talk to it.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

from .errors import SupactlError
from .exit_codes import ExitCode
from .ports import BASE_PORT, MAX_PORT, PORT_OFFSETS
from .providers.git import UPSTREAM_REPO_URL

ENV_PREFIX = "SUPACTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

LOCAL_CONTEXT = "local"
PROVIDER_LOCAL = "local"
PROVIDER_REMOTE = "remote"
ALLOWED_PROVIDERS = {PROVIDER_LOCAL, PROVIDER_REMOTE}


class ConfigError(SupactlError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.ENVIRONMENT


@dataclass(frozen=True)
class PortsConfig:
    """Port allocation defaults."""

    base: int = BASE_PORT

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base": self.base}


@dataclass(frozen=True)
class ToolsConfig:
    """External binaries and the upstream source location."""

    docker_bin: str = "docker"
    git_bin: str = "git"
    repo_url: str = UPSTREAM_REPO_URL

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker": {"bin": self.docker_bin},
            "git": {"bin": self.git_bin, "repo_url": self.repo_url},
        }


@dataclass(frozen=True)
class ContextConfig:
    """A named target for instance commands."""

    name: str
    provider: str = PROVIDER_LOCAL
    server_url: str | None = None
    api_key: str | None = None

    @property
    def is_remote(self) -> bool:
        """Return ``True`` for contexts backed by a SupaControl server."""
        return self.provider == PROVIDER_REMOTE

    def to_dict(self, *, reveal_secrets: bool = False) -> dict[str, object]:
        """Return a serialisable representation with the API key masked by default."""
        api_key = self.api_key
        if api_key and not reveal_secrets:
            api_key = _mask(api_key)
        return {
            "provider": self.provider,
            "server_url": self.server_url,
            "api_key": api_key,
        }


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration object."""

    config_file: Path
    registry_file: Path
    projects_root: Path
    logs_dir: Path
    host_address: str | None
    dashboard_username: str
    remote_timeout: float
    ports: PortsConfig
    tools: ToolsConfig
    current_context: str
    contexts: Mapping[str, ContextConfig] = field(default_factory=dict)

    def context(self, name: str | None = None) -> ContextConfig:
        """Return the context called *name* (default: the current one)."""
        selected = name or self.current_context
        if selected in self.contexts:
            return self.contexts[selected]
        if selected == LOCAL_CONTEXT:
            return ContextConfig(name=LOCAL_CONTEXT)
        known = ", ".join(sorted({LOCAL_CONTEXT, *self.contexts})) or LOCAL_CONTEXT
        raise ConfigError(
            f"Unknown context '{selected}'.",
            remediation=f"Known contexts: {known}.",
        )

    def to_dict(self, *, reveal_secrets: bool = False) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        data: dict[str, object] = {
            "config_file": str(self.config_file),
            "registry_file": str(self.registry_file),
            "projects_root": str(self.projects_root),
            "logs_dir": str(self.logs_dir),
            "host_address": self.host_address,
            "dashboard_username": self.dashboard_username,
            "ports": self.ports.to_dict(),
            "remote": {"timeout": self.remote_timeout},
            "current_context": self.current_context,
            "contexts": {
                name: context.to_dict(reveal_secrets=reveal_secrets)
                for name, context in sorted(self.contexts.items())
            },
        }
        data.update(self.tools.to_dict())
        return data


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/supactl/config.yml",
    "registry_file": "~/.supascale_database.json",
    "projects_root": "~",
    "logs_dir": "~/.local/state/supactl/logs",
    "host_address": None,  # detected with `hostname -I` when absent
    "dashboard_username": "supabase",
    "ports": {
        "base": BASE_PORT,
    },
    "docker": {
        "bin": "docker",
    },
    "git": {
        "bin": "git",
        "repo_url": UPSTREAM_REPO_URL,
    },
    "remote": {
        "timeout": 30.0,
    },
    "current_context": LOCAL_CONTEXT,
    "contexts": {},
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "ports": {"base"},
    "docker": {"bin"},
    "git": {"bin", "repo_url"},
    "remote": {"timeout"},
}
ALLOWED_CONTEXT_KEYS = {"provider", "server_url", "api_key"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)
    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)
    _validate_structure(merged)
    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    contexts = _as_dict(raw.get("contexts"), "contexts")
    for name, entry in contexts.items():
        mapping = _as_dict(entry, f"contexts.{name}")
        unknown = set(mapping.keys()) - ALLOWED_CONTEXT_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown keys for contexts.{name}: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    ports_mapping = _as_dict(raw.get("ports"), "ports")
    base = _expect_int(ports_mapping.get("base"), "ports.base", default=BASE_PORT)
    lowest = base + min(PORT_OFFSETS.values())
    highest = base + max(PORT_OFFSETS.values())
    if lowest < 1 or highest > MAX_PORT:
        raise ConfigError(
            f"ports.base={base} yields ports outside 1-{MAX_PORT} ({lowest}-{highest})."
        )

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    git_mapping = _as_dict(raw.get("git"), "git")
    tools = ToolsConfig(
        docker_bin=_expect_non_empty_str(docker_mapping.get("bin", "docker"), "docker.bin"),
        git_bin=_expect_non_empty_str(git_mapping.get("bin", "git"), "git.bin"),
        repo_url=_expect_non_empty_str(
            git_mapping.get("repo_url", UPSTREAM_REPO_URL), "git.repo_url"
        ),
    )

    remote_mapping = _as_dict(raw.get("remote"), "remote")
    timeout = _expect_positive_float(remote_mapping.get("timeout"), "remote.timeout", default=30.0)

    host_value = raw.get("host_address")
    host_address = str(host_value).strip() if host_value not in (None, "") else None

    contexts = _build_contexts(_as_dict(raw.get("contexts"), "contexts"))
    current_context = _expect_non_empty_str(
        raw.get("current_context", LOCAL_CONTEXT), "current_context"
    )

    config = AppConfig(
        config_file=_to_path(raw.get("config_file")),
        registry_file=_to_path(raw.get("registry_file")),
        projects_root=_to_path(raw.get("projects_root")),
        logs_dir=_to_path(raw.get("logs_dir")),
        host_address=host_address or None,
        dashboard_username=_expect_non_empty_str(
            raw.get("dashboard_username", "supabase"), "dashboard_username"
        ),
        remote_timeout=timeout,
        ports=PortsConfig(base=base),
        tools=tools,
        current_context=current_context,
        contexts=contexts,
    )
    # Fails early when current_context names nothing.
    config.context()
    return config


def _build_contexts(raw: Mapping[str, object]) -> dict[str, ContextConfig]:
    contexts: dict[str, ContextConfig] = {}
    for name, entry in raw.items():
        mapping = _as_dict(entry, f"contexts.{name}")
        default_provider = PROVIDER_LOCAL if name == LOCAL_CONTEXT else PROVIDER_REMOTE
        provider = str(mapping.get("provider") or default_provider)
        if provider not in ALLOWED_PROVIDERS:
            allowed = ", ".join(sorted(ALLOWED_PROVIDERS))
            raise ConfigError(
                f"Unsupported provider '{provider}' for context '{name}'. Allowed: {allowed}."
            )
        server_url = _optional_str(mapping.get("server_url"), f"contexts.{name}.server_url")
        api_key = _optional_str(mapping.get("api_key"), f"contexts.{name}.api_key")
        if provider == PROVIDER_REMOTE:
            if not server_url:
                raise ConfigError(f"contexts.{name}.server_url is required for remote contexts.")
            if not server_url.startswith(("http://", "https://")):
                raise ConfigError(
                    f"contexts.{name}.server_url must start with http:// or https://."
                )
            if not api_key:
                raise ConfigError(f"contexts.{name}.api_key is required for remote contexts.")
        contexts[name] = ContextConfig(
            name=name,
            provider=provider,
            server_url=server_url.rstrip("/") if server_url else None,
            api_key=api_key,
        )
    return contexts


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}…{secret[-4:]}"


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_empty_str(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text:
        raise ConfigError(f"{key} must be a non-empty string.")
    return text


def _optional_str(value: object, key: str) -> str | None:
    if value is None or value == "":
        return None
    return _expect_non_empty_str(value, key)


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "ContextConfig",
    "LOCAL_CONTEXT",
    "PortsConfig",
    "ToolsConfig",
    "load_config",
]
