import json

import pytest

from esp32_flasher.core.command_registry import (
    CommandRegistry,
    CustomCommand,
    JsonCommandStore,
    SqliteCommandStore,
    create_store,
)
from esp32_flasher.utils.exceptions import CommandValidationError


@pytest.fixture(params=["json", "sqlite"])
def store_factory(request, tmp_path):
    path = tmp_path / ("commands.json" if request.param == "json" else "commands.db")
    stores = []

    def factory():
        store = create_store(request.param, path)
        stores.append(store)
        return store

    yield factory
    for store in stores:
        store.close()


def test_insert_and_list(store_factory):
    registry = CommandRegistry(store_factory())
    registry.insert(CustomCommand("1", "Reset", "AT+RST"))

    assert registry.list() == [CustomCommand("1", "Reset", "AT+RST")]


def test_list_keeps_insertion_order(store_factory):
    registry = CommandRegistry(store_factory())
    for cid in ["3", "1", "2"]:
        registry.insert(CustomCommand(cid, f"cmd {cid}", "help"))

    assert [c.id for c in registry.list()] == ["3", "1", "2"]


def test_insert_existing_id_replaces(store_factory):
    registry = CommandRegistry(store_factory())
    registry.insert(CustomCommand("1", "Reset", "AT+RST"))
    registry.insert(CustomCommand("1", "Reboot", "reboot"))

    assert registry.list() == [CustomCommand("1", "Reboot", "reboot")]


def test_delete(store_factory):
    registry = CommandRegistry(store_factory())
    registry.insert(CustomCommand("1", "Reset", "AT+RST"))
    registry.insert(CustomCommand("2", "Info", "info"))

    registry.delete("1")

    assert [c.id for c in registry.list()] == ["2"]


def test_delete_unknown_id_is_noop(store_factory):
    registry = CommandRegistry(store_factory())
    registry.insert(CustomCommand("1", "Reset", "AT+RST"))

    registry.delete("missing")

    assert len(registry.list()) == 1


def test_commands_survive_reopen(store_factory):
    first = CommandRegistry(store_factory())
    first.insert(CustomCommand("1", "Reset", "AT+RST"))
    first.close()

    second = CommandRegistry(store_factory())

    assert second.list() == [CustomCommand("1", "Reset", "AT+RST")]


def test_create_assigns_timestamp_ids(store_factory):
    registry = CommandRegistry(store_factory())

    first = registry.create("  Scan  ", " wifi scan ")
    second = registry.create("Scan again", "wifi scan")

    assert first.name == "Scan" and first.command == "wifi scan"
    assert first.id.isdigit()
    assert first.id != second.id
    assert registry.get(first.id) == first
    assert registry.get("nope") is None


@pytest.mark.parametrize("name, command", [("", "help"), ("Help", ""), ("  ", "help"), ("Help", None)])
def test_create_rejects_blank_fields(store_factory, name, command):
    registry = CommandRegistry(store_factory())

    with pytest.raises(CommandValidationError):
        registry.create(name, command)
    assert registry.list() == []


def test_json_file_layout_and_backup(tmp_path):
    path = tmp_path / "custom_commands.json"
    store = JsonCommandStore(path)
    store.insert(CustomCommand("1", "Reset", "AT+RST"))
    store.insert(CustomCommand("2", "Info", "info"))

    data = json.loads(path.read_text())
    assert data["version"] == "1.0"
    assert data["commands"][0] == {"id": "1", "name": "Reset", "command": "AT+RST"}
    assert path.with_suffix(".json.bak").exists()
    assert not list(tmp_path.glob("*.tmp"))


def test_corrupt_json_file_loads_empty(tmp_path):
    path = tmp_path / "custom_commands.json"
    path.write_text("{not json")

    assert JsonCommandStore(path).list() == []


def test_sqlite_in_memory_store():
    store = SqliteCommandStore(":memory:")
    store.insert(CustomCommand("1", "Reset", "AT+RST"))

    assert store.list() == [CustomCommand("1", "Reset", "AT+RST")]
    store.close()


def test_unknown_backend():
    with pytest.raises(ValueError):
        create_store("redis", "x")
