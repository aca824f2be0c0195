"""Registry file persistence tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from supactl.errors import StateRegistryError
from supactl.state import REGISTRY_FILENAME, Registry, RegistryStore


def test_load_missing_file_returns_empty_registry(tmp_path: Path) -> None:
    """An absent registry file yields an empty registry seeded at the base port."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)

    registry = store.load()

    assert registry.projects == {}
    assert registry.last_port_assigned == 54321


def test_load_missing_file_uses_configured_base(tmp_path: Path) -> None:
    """The configured base port seeds a fresh registry."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME, base_port=60321)

    assert store.load().last_port_assigned == 60321


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    """Saving then loading reproduces the same projects and watermark."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)
    registry = Registry.empty()
    registry.add("demo", "/srv/demo")
    registry.add("other", "/srv/other")

    store.save(registry)
    loaded = store.load()

    assert loaded == registry
    assert (store.path.stat().st_mode & 0o777) == 0o600


def test_saved_document_uses_expected_layout(tmp_path: Path) -> None:
    """The JSON document has ``projects`` and ``last_port_assigned`` keys."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)
    registry = Registry.empty()
    registry.add("demo", "/srv/demo")
    store.save(registry)

    data = json.loads(store.path.read_text(encoding="utf-8"))

    assert data["last_port_assigned"] == 55321
    assert data["projects"]["demo"]["directory"] == "/srv/demo"
    assert data["projects"]["demo"]["ports"]["kong_https"] == 54764


def test_save_leaves_no_temporary_files(tmp_path: Path) -> None:
    """Atomic writes clean up their temporary file."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)
    store.save(Registry.empty())

    assert [path.name for path in tmp_path.iterdir()] == [REGISTRY_FILENAME]


def test_remove_leaves_directory_untouched(tmp_path: Path) -> None:
    """Removing a project from the registry never deletes its directory."""
    project_dir = tmp_path / "demo"
    project_dir.mkdir()
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)
    registry = Registry.empty()
    registry.add("demo", project_dir)
    store.save(registry)

    registry = store.load()
    registry.remove("demo")
    store.save(registry)

    assert project_dir.is_dir()
    assert store.load().projects == {}


def test_load_rejects_invalid_json(tmp_path: Path) -> None:
    """Malformed JSON is a fatal registry error."""
    path = tmp_path / REGISTRY_FILENAME
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StateRegistryError):
        RegistryStore(path).load()


@pytest.mark.parametrize(
    "document",
    [
        [],
        {"projects": [], "last_port_assigned": 54321},
        {"projects": {}},
        {"projects": {}, "last_port_assigned": "54321"},
        {"projects": {"demo": {"directory": "/srv/demo"}}, "last_port_assigned": 55321},
    ],
)
def test_load_rejects_malformed_structure(tmp_path: Path, document: object) -> None:
    """Structurally invalid documents raise StateRegistryError."""
    path = tmp_path / REGISTRY_FILENAME
    path.write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(StateRegistryError):
        RegistryStore(path).load()


def test_load_accepts_missing_projects_key(tmp_path: Path) -> None:
    """A document without projects is treated as an empty registry."""
    path = tmp_path / REGISTRY_FILENAME
    path.write_text(json.dumps({"last_port_assigned": 56321}), encoding="utf-8")

    registry = RegistryStore(path).load()

    assert registry.projects == {}
    assert registry.last_port_assigned == 56321


def test_save_wraps_os_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Write failures surface as StateRegistryError."""
    store = RegistryStore(tmp_path / REGISTRY_FILENAME)

    def fail_replace(*_args: object, **_kwargs: object) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("supactl.state.registry.os.replace", fail_replace)

    with pytest.raises(StateRegistryError):
        store.save(Registry.empty())
    assert not store.path.exists()
