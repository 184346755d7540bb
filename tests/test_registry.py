import json

import pytest
from eth_utils import to_checksum_address

from upgrades.registry import (
    RegistryEntry,
    entry_from_handle,
    get_entry,
    read_registry,
    save_libraries_to_file,
    update_registry_entry,
    write_registry,
)

DEPLOYER = to_checksum_address("0x" + "de" * 20)


def _entry(name, chain_id=1337, version=1, proxy="0x" + "01" * 20):
    return RegistryEntry(
        chain_id=chain_id,
        name=name,
        contract_type=f"{name}V{version}",
        proxy=to_checksum_address(proxy),
        implementation=to_checksum_address("0x" + "02" * 20),
        version=version,
        deployer=DEPLOYER,
    )


def test_write_and_read_registry(tmp_path):
    filepath = tmp_path / "registry.json"
    entries = [_entry("widget"), _entry("gadget", chain_id=100010)]

    write_registry(entries, filepath)

    assert sorted(read_registry(filepath)) == sorted(entries)
    data = json.loads(filepath.read_text())
    assert list(data) == ["100010", "1337"]


def test_write_registry_merges(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([_entry("widget")], filepath)
    output = write_registry([_entry("gadget")], filepath)

    assert output == filepath
    assert {entry.name for entry in read_registry(filepath)} == {"widget", "gadget"}


def test_write_registry_overlap_goes_to_unmerged_file(tmp_path, capsys):
    filepath = tmp_path / "registry.json"
    write_registry([_entry("widget")], filepath)
    output = write_registry([_entry("widget", version=2)], filepath)

    assert output == tmp_path / "registry.unmerged.json"
    assert read_registry(filepath)[0].version == 1
    assert read_registry(output)[0].version == 2
    assert "Cannot merge registries" in capsys.readouterr().out


def test_write_registry_without_entries(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([], filepath)
    assert not filepath.exists()


def test_update_registry_entry(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([_entry("widget"), _entry("gadget")], filepath)

    upgraded = _entry("widget", version=2)._replace(libraries={"WidgetUtils": DEPLOYER})
    update_registry_entry(upgraded, filepath)

    assert get_entry(filepath, 1337, "widget") == upgraded
    assert get_entry(filepath, 1337, "gadget").version == 1
    with pytest.raises(ValueError):
        get_entry(filepath, 1, "widget")


def test_entry_from_handle(deployer, signer):
    proxy = deployer.deploy_proxy("WidgetV1")
    entry = entry_from_handle(proxy, chain_id=1337, deployer=signer.address, name="widget")

    assert entry.name == "widget"
    assert entry.contract_type == "WidgetV1"
    assert entry.proxy == proxy.address
    assert entry.implementation == proxy.implementation()


def test_save_libraries_to_file(tmp_path):
    libraries = {"WidgetV2": {"WidgetUtils": DEPLOYER}}
    filepath = save_libraries_to_file(libraries, tmp_path / "local" / "widget")

    assert filepath.name == "libraries.json"
    assert json.loads(filepath.read_text()) == libraries


def test_update_registry_entry_keeps_registry_on_failed_write(tmp_path, monkeypatch):
    filepath = tmp_path / "registry.json"
    write_registry([_entry("widget")], filepath)
    original = filepath.read_text()

    def fail(*args, **kwargs):
        raise OSError("No space left on device")

    monkeypatch.setattr(json, "dump", fail)
    with pytest.raises(OSError):
        update_registry_entry(_entry("widget", version=2), filepath)
    assert filepath.read_text() == original


def test_entries_without_libraries(tmp_path):
    entry = _entry("widget")
    assert entry.libraries is None

    filepath = write_registry([entry], tmp_path / "registry.json")
    assert json.loads(filepath.read_text())["1337"]["widget"]["libraries"] == {}
    assert read_registry(filepath) == [entry]


def test_update_registry_entry_leaves_no_temporary_file(tmp_path):
    filepath = tmp_path / "registry.json"
    write_registry([_entry("widget")], filepath)

    assert update_registry_entry(_entry("widget", version=2), filepath) == filepath
    assert [path.name for path in tmp_path.iterdir()] == ["registry.json"]
    assert get_entry(filepath, 1337, "widget").version == 2
