"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from supactl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.registry_file == Path("~/.supascale_database.json").expanduser()
    assert config.projects_root == Path.home()
    assert config.ports.base == 54321
    assert config.tools.docker_bin == "docker"
    assert config.tools.repo_url == "https://github.com/supabase/supabase"
    assert config.dashboard_username == "supabase"
    assert config.host_address is None
    assert config.current_context == "local"
    assert config.context().is_remote is False


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "registry_file: {registry}\n"
        "projects_root: {root}\n"
        "host_address: 10.1.2.3\n"
        "ports:\n"
        "  base: 60321\n"
        "docker:\n"
        "  bin: /usr/local/bin/docker\n"
        "remote:\n"
        "  timeout: 12\n".format(
            registry=tmp_path / "registry.json",
            root=tmp_path / "projects",
        )
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.registry_file == tmp_path / "registry.json"
    assert config.projects_root == tmp_path / "projects"
    assert config.host_address == "10.1.2.3"
    assert config.ports.base == 60321
    assert config.tools.docker_bin == "/usr/local/bin/docker"
    assert config.remote_timeout == 12.0


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("ports:\n  base: 60321\n")
    env = {
        "SUPACTL_PORTS__BASE": "61321",
        "SUPACTL_REGISTRY_FILE": str(tmp_path / "env-registry.json"),
        "SUPACTL_GIT__REPO_URL": "https://mirror.example.com/supabase.git",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.ports.base == 61321
    assert config.registry_file == tmp_path / "env-registry.json"
    assert config.tools.repo_url == "https://mirror.example.com/supabase.git"


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("dashboard_username: admin\n")

    config = load_config(env={"SUPACTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.dashboard_username == "admin"


def test_overrides_win_over_env(tmp_path: Path) -> None:
    """Programmatic overrides are applied last."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"SUPACTL_PORTS__BASE": "61321"},
        overrides={"ports": {"base": 62321}},
    )

    assert config.ports.base == 62321


def test_remote_context_is_parsed_and_masked(tmp_path: Path) -> None:
    """Remote contexts carry their server and mask the API key when dumped."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(
        "current_context: prod\n"
        "contexts:\n"
        "  prod:\n"
        "    server_url: https://control.example.com/\n"
        "    api_key: sk_live_abcdefghijkl\n"
    )

    config = load_config(config_file=cfg, env={})

    context = config.context()
    assert context.name == "prod"
    assert context.is_remote is True
    assert context.server_url == "https://control.example.com"
    assert config.to_dict()["contexts"]["prod"]["api_key"] == "sk_l…ijkl"
    assert context.to_dict(reveal_secrets=True)["api_key"] == "sk_live_abcdefghijkl"
    assert config.context("local").is_remote is False


def test_context_from_environment(tmp_path: Path) -> None:
    """Contexts can be declared entirely through environment variables."""
    env = {
        "SUPACTL_CONTEXTS__STAGING__SERVER_URL": "http://10.0.0.9:8091",
        "SUPACTL_CONTEXTS__STAGING__API_KEY": "sk_staging_key",
        "SUPACTL_CURRENT_CONTEXT": "staging",
    }

    config = load_config(config_file=tmp_path / "missing.yml", env=env)

    assert config.context().server_url == "http://10.0.0.9:8091"


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("contexts:\n  prod:\n    api_key: sk_key_123456\n", "server_url is required"),
        ("contexts:\n  prod:\n    server_url: ftp://x\n    api_key: k\n", "http"),
        ("contexts:\n  prod:\n    server_url: https://x\n", "api_key is required"),
        ("contexts:\n  prod:\n    provider: cloud\n", "Unsupported provider"),
        ("contexts:\n  prod:\n    token: abc\n", "Unknown keys for contexts.prod"),
    ],
)
def test_invalid_contexts_raise(tmp_path: Path, content: str, match: str) -> None:
    """Remote contexts need a valid http(s) server URL and an API key."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(content)

    with pytest.raises(ConfigError, match=match):
        load_config(config_file=cfg, env={})


def test_unknown_current_context_raises(tmp_path: Path) -> None:
    """Selecting a context that is not defined fails at load time."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("current_context: nowhere\n")

    with pytest.raises(ConfigError, match="Unknown context"):
        load_config(config_file=cfg, env={})


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_raises(tmp_path: Path) -> None:
    """Unexpected keys inside a section trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("ports:\n  strategy: dynamic\n")

    with pytest.raises(ConfigError, match="Unknown ports configuration keys"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize("base", ["0", "65200", "true"])
def test_invalid_port_base_raises(tmp_path: Path, base: str) -> None:
    """A base whose block leaves the valid port range is rejected."""
    with pytest.raises(ConfigError):
        load_config(config_file=tmp_path / "missing.yml", env={"SUPACTL_PORTS__BASE": base})


def test_non_positive_timeout_raises(tmp_path: Path) -> None:
    """The remote timeout must be positive."""
    with pytest.raises(ConfigError, match="greater than zero"):
        load_config(config_file=tmp_path / "missing.yml", env={"SUPACTL_REMOTE__TIMEOUT": "0"})
