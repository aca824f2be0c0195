"""Tests for port blocks and allocation through the registry."""
from __future__ import annotations

import itertools

import pytest

from supactl.errors import AlreadyExistsError, NotFoundError, StateRegistryError
from supactl.ports import BASE_PORT, PORT_INCREMENT, Ports, PortsError
from supactl.state import Project, Registry


def test_from_base_applies_offsets() -> None:
    """Every port is derived from the base with its fixed offset."""
    ports = Ports.from_base(54321)

    assert ports == Ports(
        api=54321,
        db=54322,
        shadow=54320,
        studio=54323,
        inbucket=54324,
        smtp=54325,
        pop3=54326,
        pooler=54329,
        analytics=54327,
        kong_https=54764,
    )


def test_from_base_rejects_blocks_beyond_max_port() -> None:
    """A block whose highest port exceeds 65535 cannot be built."""
    with pytest.raises(PortsError):
        Ports.from_base(65_200)


def test_from_mapping_rejects_missing_or_non_integer_ports() -> None:
    """Registry entries must carry all ten integer ports."""
    raw = Ports.from_base(BASE_PORT).to_dict()
    raw.pop("pooler")
    with pytest.raises(PortsError):
        Ports.from_mapping(raw)

    raw = Ports.from_base(BASE_PORT).to_dict()
    raw["db"] = "54322"
    with pytest.raises(PortsError):
        Ports.from_mapping(raw)


def test_first_project_gets_base_block_and_advances_watermark() -> None:
    """Adding 'demo' to an empty registry assigns the base block."""
    registry = Registry.empty()

    project = registry.add("demo", "/home/me/demo")

    assert project.ports.api == 54321
    assert project.ports.db == 54322
    assert registry.last_port_assigned == 55321


def test_second_project_is_spaced_one_increment_apart() -> None:
    """The next project starts one increment higher and shares no ports."""
    registry = Registry.empty()
    first = registry.add("demo", "/srv/demo")
    second = registry.add("other", "/srv/other")

    assert second.ports.api == first.ports.api + PORT_INCREMENT
    assert not first.ports.overlaps(second.ports)


def test_many_projects_have_pairwise_disjoint_blocks() -> None:
    """No two registered projects ever share a port."""
    registry = Registry.empty()
    for index in range(8):
        registry.add(f"p{index}", f"/srv/p{index}")

    projects = [project for _, project in registry]
    for left, right in itertools.combinations(projects, 2):
        assert not left.ports.overlaps(right.ports)


def test_add_skips_blocks_that_collide_with_existing_projects() -> None:
    """A watermark pointing into a used block is skipped forward."""
    existing = Project("/srv/a", Ports.from_base(BASE_PORT))
    registry = Registry(projects={"a": existing}, last_port_assigned=BASE_PORT)

    project = registry.add("b", "/srv/b")

    assert project.ports.api == BASE_PORT + PORT_INCREMENT
    assert registry.last_port_assigned == BASE_PORT + 2 * PORT_INCREMENT


def test_add_duplicate_raises() -> None:
    """An id can only be registered once."""
    registry = Registry.empty()
    registry.add("demo", "/srv/demo")

    with pytest.raises(AlreadyExistsError):
        registry.add("demo", "/srv/elsewhere")


def test_add_fails_when_port_space_is_exhausted() -> None:
    """Allocation beyond the valid port range raises StateRegistryError."""
    registry = Registry.empty(base_port=65_100)

    with pytest.raises(StateRegistryError):
        registry.add("demo", "/srv/demo")
    assert not registry.exists("demo")


def test_remove_returns_project_and_missing_raises() -> None:
    """Removal returns the entry; unknown ids raise NotFoundError."""
    registry = Registry.empty()
    added = registry.add("demo", "/srv/demo")

    assert registry.remove("demo") == added
    assert not registry.exists("demo")
    with pytest.raises(NotFoundError):
        registry.remove("demo")


def test_watermark_never_decreases_after_remove() -> None:
    """Removing a project does not hand its block out again."""
    registry = Registry.empty()
    registry.add("demo", "/srv/demo")
    watermark = registry.last_port_assigned

    registry.remove("demo")
    again = registry.add("demo2", "/srv/demo2")

    assert registry.last_port_assigned > watermark
    assert again.ports.api == watermark
