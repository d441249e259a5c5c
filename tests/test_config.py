import json

import pytest

import config


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    # load_config() also looks for peerline_config.json in the cwd.
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_defaults():

    cfg = config.load_config(["--connect", "127.0.0.1"])

    assert cfg["connect"] == "127.0.0.1"
    assert cfg["listen"] is False
    assert cfg["port"] == config.DEFAULT_PORT
    assert cfg["max_response_bytes"] == 1024
    assert cfg["read_retry_delay"] == 0.1
    assert cfg["key_file"] == config.DEFAULT_KEY_PATH
    assert cfg["peer_key"] is None
    assert cfg["plain"] is False


def test_listen_host_default():

    cfg = config.load_config(["--listen"])
    assert cfg["host"] == config.DEFAULT_LISTEN_HOST

    cfg = config.load_config(["--listen", "--host", "127.0.0.1", "--port", "6000"])
    assert cfg["host"] == "127.0.0.1"
    assert cfg["port"] == 6000


def test_mode_required():

    with pytest.raises(SystemExit):
        config.load_config([])
    with pytest.raises(SystemExit):
        config.load_config(["--listen", "--connect", "127.0.0.1"])


def test_json_file(isolated_cwd):

    path = isolated_cwd / "custom.json"
    path.write_text(json.dumps({
        "port": 7000,
        "key_file": "/keys/me.pem",
        "transport": {"max_response_bytes": 2048, "read_retry_delay": 0.5},
    }))

    cfg = config.load_config(["--connect", "localhost", "--config", str(path)])
    assert cfg["port"] == 7000
    assert cfg["key_file"] == "/keys/me.pem"
    assert cfg["max_response_bytes"] == 2048
    assert cfg["read_retry_delay"] == 0.5

    # The command line wins.
    cfg = config.load_config([
        "--connect", "localhost", "--config", str(path),
        "--port", "7001", "--retry-delay", "0.25",
    ])
    assert cfg["port"] == 7001
    assert cfg["read_retry_delay"] == 0.25
    assert cfg["max_response_bytes"] == 2048


def test_default_json_file(isolated_cwd):

    (isolated_cwd / config.DEFAULT_CONFIG_FILE).write_text(json.dumps({"plain": True}))
    cfg = config.load_config(["--connect", "localhost"])
    assert cfg["plain"] is True


def test_malformed_json_ignored(isolated_cwd):

    path = isolated_cwd / "broken.json"
    path.write_text("{not json")
    cfg = config.load_config(["--connect", "localhost", "--config", str(path)])
    assert cfg["port"] == config.DEFAULT_PORT


def test_get_config_value():

    cfg = {"transport": {"read_retry_delay": 0.2}, "port": 1}

    assert config.get_config_value(cfg, "port") == 1
    assert config.get_config_value(cfg, "transport.read_retry_delay") == 0.2
    assert config.get_config_value(cfg, "transport.missing", "x") == "x"
    assert config.get_config_value(cfg, "port.deeper", 5) == 5
