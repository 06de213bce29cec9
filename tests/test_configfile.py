import base64
import os

import pytest

from ctrld import configfile
from ctrld.configfile import (
    CD_GENERATED_HEADER,
    ConfigDecodeError,
    abs_home_dir,
    dir_writable,
    read_base64_config,
    read_config_file,
    read_config_text,
    set_listener_default_value,
    socket_dir,
    user_home_dir,
    write_config_file,
)


def _sample_config():
    return {
        "service": {"log_level": "info"},
        "listener": {"0": {"ip": "127.0.0.1", "port": 53}},
        "upstream": {"0": {"endpoint": "https://freedns.controld.com/p2", "type": "doh", "timeout": 5000}},
    }


def test_write_config_file_creates_file(tmp_path):
    path = tmp_path / "ctrld.toml"
    assert not path.exists()
    write_config_file({}, path)
    assert path.exists()


def test_write_then_read_round_trip(tmp_path):
    path = tmp_path / "ctrld.toml"
    cfg = _sample_config()
    write_config_file(cfg, path)
    assert read_config_file(path) == cfg


def test_write_cd_generated_header(tmp_path):
    path = tmp_path / "ctrld.toml"
    write_config_file(_sample_config(), path, cd_generated=True)
    text = path.read_text()
    assert text.startswith(CD_GENERATED_HEADER)
    assert read_config_file(path) == _sample_config()


def test_write_without_header(tmp_path):
    path = tmp_path / "ctrld.toml"
    write_config_file(_sample_config(), path)
    assert not path.read_text().startswith("#")


def test_write_truncates_existing(tmp_path):
    path = tmp_path / "ctrld.toml"
    path.write_text("x = " + "1" * 1000 + "\n")
    write_config_file({"a": 1}, path)
    assert read_config_file(path) == {"a": 1}


def test_read_config_text_values():
    cfg = read_config_text('[listener.0]\nip = "0.0.0.0"\nport = 5354\n')
    assert cfg["listener"]["0"] == {"ip": "0.0.0.0", "port": 5354}


def test_read_config_text_error_position():
    with pytest.raises(ConfigDecodeError) as info:
        read_config_text("a = 1\nb = \n")
    assert info.value.line == 2
    assert info.value.column > 0
    assert info.value.position == (info.value.line, info.value.column)


def test_read_config_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_config_file(tmp_path / "missing.toml")


def test_read_base64_round_trip():
    encoded = base64.b64encode(b'[service]\nlog_level = "debug"\n').decode()
    assert read_base64_config(encoded) == {"service": {"log_level": "debug"}}


def test_read_base64_empty():
    assert read_base64_config("") is None


def test_read_base64_invalid():
    with pytest.raises(ValueError, match="invalid base64 config"):
        read_base64_config("not base64!!")


def test_read_base64_invalid_toml():
    encoded = base64.b64encode(b"a = \n").decode()
    with pytest.raises(ConfigDecodeError):
        read_base64_config(encoded)


def test_set_listener_default_value_empty():
    cfg = {}
    set_listener_default_value(cfg)
    assert cfg == {"listener": {"0": {"ip": "", "port": 0}}}


def test_set_listener_default_value_keeps_existing():
    cfg = {"listener": {"1": {"ip": "127.0.0.1", "port": 53}}}
    set_listener_default_value(cfg)
    assert cfg == {"listener": {"1": {"ip": "127.0.0.1", "port": 53}}}


def test_dir_writable(tmp_path):
    assert dir_writable(tmp_path) is True
    assert list(tmp_path.iterdir()) == []


def test_dir_writable_missing(tmp_path):
    assert dir_writable(tmp_path / "missing") is False


def test_user_home_dir_creates_default(tmp_path, monkeypatch):
    target = tmp_path / "controld"
    monkeypatch.setattr(configfile, "DEFAULT_HOME_DIR", str(target))
    assert user_home_dir() == str(target)
    assert target.is_dir()


def test_user_home_dir_fallback(tmp_path, monkeypatch):
    blocker = tmp_path / "file"
    blocker.write_text("")
    monkeypatch.setattr(configfile, "DEFAULT_HOME_DIR", str(blocker / "controld"))
    assert user_home_dir() == os.path.expanduser("~")


def test_socket_dir_writable(tmp_path, monkeypatch):
    monkeypatch.setattr(configfile, "SOCKET_DIR", str(tmp_path))
    assert socket_dir() == str(tmp_path)


def test_socket_dir_falls_back_to_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    monkeypatch.setattr(configfile, "SOCKET_DIR", str(tmp_path / "missing"))
    monkeypatch.setattr(configfile, "DEFAULT_HOME_DIR", str(home))
    assert socket_dir() == str(home)


def test_abs_home_dir_with_homedir(tmp_path):
    assert abs_home_dir(".forwarders.txt", str(tmp_path)) == os.path.join(str(tmp_path), ".forwarders.txt")


def test_abs_home_dir_without_homedir(tmp_path, monkeypatch):
    home = tmp_path / "controld"
    monkeypatch.setattr(configfile, "DEFAULT_HOME_DIR", str(home))
    assert abs_home_dir("ctrld.toml") == os.path.join(str(home), "ctrld.toml")