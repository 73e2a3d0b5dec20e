import stat

import pytest
import yaml

from sshconsole.config import ConsoleSettings, SettingsManager, load_or_create_host_key, save_host_key
from sshconsole.errors import KeyFormatError
from sshconsole.keys import HostKey


def test_defaults_when_missing(tmp_path):
    manager = SettingsManager(tmp_path / "config.yaml")
    assert manager.config_path == tmp_path / "config.yaml"
    settings = manager.settings
    assert settings.host == "0.0.0.0"
    assert settings.port == 2222
    assert settings.workers == 1


def test_save_and_reload(tmp_path):
    path = tmp_path / "nested" / "config.yaml"
    manager = SettingsManager(path)
    manager.settings.port = 2022
    manager.settings.workers = 4
    manager.save()

    data = yaml.safe_load(path.read_text())
    assert data["port"] == 2022

    reloaded = SettingsManager(path).settings
    assert (reloaded.port, reloaded.workers) == (2022, 4)


def test_unknown_keys_ignored(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: 2300\ntheme: dark\n")
    assert SettingsManager(path).settings == ConsoleSettings(port=2300)


@pytest.mark.parametrize("text", ["port: [unclosed\n", "- just\n- a list\n"])
def test_malformed_file_falls_back_to_defaults(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    assert SettingsManager(path).settings == ConsoleSettings()


def test_empty_file_is_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert SettingsManager(path).settings == ConsoleSettings()


def test_host_key_created_once(tmp_path):
    path = tmp_path / "keys" / "host_key"
    first = load_or_create_host_key(path, comment="test")
    assert path.exists()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert path.read_text().strip().endswith(" test")

    second = load_or_create_host_key(path)
    assert second.public_key == first.public_key


def test_corrupt_host_key_is_not_replaced(tmp_path):
    path = tmp_path / "host_key"
    path.write_text("ed25519 !!!\n")
    with pytest.raises(KeyFormatError):
        load_or_create_host_key(path)
    assert path.read_text() == "ed25519 !!!\n"


def test_save_host_key_refuses_overwrite(tmp_path, host_key):
    path = tmp_path / "host_key"
    save_host_key(host_key, path)
    with pytest.raises(FileExistsError):
        save_host_key(HostKey.generate(), path)
    assert HostKey.parse(path.read_text()).public_key == host_key.public_key
