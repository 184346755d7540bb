import click
import pytest
from eth_utils import to_checksum_address

from upgrades.confirm import _confirm_resolution, _confirm_upgrade
from upgrades.types import ChecksumAddress, VersionLabel


@pytest.mark.parametrize("value, expected", [("v7", "v7"), ("7", "v7"), ("V07", "v7")])
def test_version_label(value, expected):
    assert VersionLabel().convert(value, None, None) == expected


@pytest.mark.parametrize("value", ["latest", "v0", "v"])
def test_version_label_invalid(value):
    with pytest.raises(click.BadParameter):
        VersionLabel().convert(value, None, None)


def test_checksum_address():
    address = "0x" + "ab" * 20
    assert ChecksumAddress().convert(address, None, None) == to_checksum_address(address)
    with pytest.raises(click.BadParameter):
        ChecksumAddress().convert("0x1234", None, None)


def test_confirm_upgrade(monkeypatch):
    monkeypatch.setattr("builtins.input", lambda _: "y")
    _confirm_upgrade("X2EarnApps", "v8", "testnet")

    monkeypatch.setattr("builtins.input", lambda _: "")
    with pytest.raises(SystemExit):
        _confirm_upgrade("X2EarnApps", "v8", "testnet")


def test_confirm_resolution_zero_address(monkeypatch, capsys):
    answers = iter(["y", "n"])
    monkeypatch.setattr("builtins.input", lambda _: next(answers))
    with pytest.raises(SystemExit):
        _confirm_resolution(["0x" + "00" * 20, 42], "initializeV2", "WidgetV2")
    assert "[1]=42" in capsys.readouterr().out
