import logging

import pytest

from simplechat.cli import load_client_config, load_server_config
from simplechat.config import (
    ClientRuntimeConfig,
    ServerRuntimeConfig,
    apply_config_data,
    load_config,
)
from simplechat.logging_config import _parse_level


def test_defaults() -> None:
    assert ServerRuntimeConfig().port == 5555
    assert ServerRuntimeConfig().host == ""
    assert ClientRuntimeConfig().host == "localhost"
    assert ClientRuntimeConfig().log_level == "WARNING"


def test_section_and_logging_tables_are_applied() -> None:
    data = {
        "server": {"port": "6000", "host": "127.0.0.1"},
        "client": {"port": 7000},
        "logging": {"level": "DEBUG", "file": ""},
        "unknown": 1,
    }

    server = apply_config_data(ServerRuntimeConfig(), data, section="server")
    client = apply_config_data(ClientRuntimeConfig(), data, section="client")

    assert (server.host, server.port, server.log_level) == ("127.0.0.1", 6000, "DEBUG")
    assert server.log_file is None
    assert client.port == 7000
    assert client.host == "localhost"


def test_config_path_cannot_be_overridden() -> None:
    cfg = apply_config_data(
        ServerRuntimeConfig(config_path="a.toml"), {"config_path": "b.toml"}, section="server"
    )
    assert cfg.config_path == "a.toml"


def test_invalid_port_is_an_error() -> None:
    with pytest.raises(ValueError):
        apply_config_data(ServerRuntimeConfig(), {"server": {"port": "http"}}, section="server")


def test_missing_file_keeps_defaults(tmp_path) -> None:
    path = str(tmp_path / "missing.toml")
    cfg = load_config(ServerRuntimeConfig(), path, section="server")
    assert cfg == ServerRuntimeConfig(config_path=path)


def test_toml_file_is_loaded(tmp_path) -> None:
    path = tmp_path / "simplechat.toml"
    path.write_text(
        '[server]\nport = 6001\n\n[client]\nhost = "chat.example.org"\n\n'
        '[logging]\nlevel = "INFO"\n',
        encoding="utf-8",
    )

    server = load_config(ServerRuntimeConfig(), str(path), section="server")
    client = load_config(ClientRuntimeConfig(), str(path), section="client")

    assert server.port == 6001
    assert server.log_level == "INFO"
    assert client.host == "chat.example.org"
    assert client.port == 5555


def test_parse_level() -> None:
    assert _parse_level("debug", logging.WARNING) == logging.DEBUG
    assert _parse_level("WARN", logging.INFO) == logging.WARNING
    assert _parse_level("15", logging.INFO) == 15
    assert _parse_level("", logging.INFO) == logging.INFO
    assert _parse_level("nonsense", logging.ERROR) == logging.ERROR
    assert _parse_level(None, logging.ERROR) == logging.ERROR


def test_server_command_line(tmp_path) -> None:
    missing = str(tmp_path / "none.toml")

    assert load_server_config(["--config", missing]).port == 5555

    cfg = load_server_config(["6000", "--host", "127.0.0.1", "--config", missing])
    assert (cfg.port, cfg.host) == (6000, "127.0.0.1")


def test_command_line_overrides_file(tmp_path) -> None:
    path = tmp_path / "simplechat.toml"
    path.write_text('[server]\nport = 6001\n[logging]\nfile = "chat.log"\n', encoding="utf-8")

    cfg = load_server_config(["7000", "--config", str(path), "--log-file", "", "--log-level", "INFO"])

    assert cfg.port == 7000
    assert cfg.log_file is None
    assert cfg.log_level == "INFO"


def test_client_command_line(tmp_path) -> None:
    missing = str(tmp_path / "none.toml")

    login_id, cfg = load_client_config(["alice", "--config", missing])
    assert login_id == "alice"
    assert (cfg.host, cfg.port) == ("localhost", 5555)

    login_id, cfg = load_client_config(["bob", "chat.example.org", "6000", "--config", missing])
    assert login_id == "bob"
    assert (cfg.host, cfg.port) == ("chat.example.org", 6000)


def test_client_requires_login_id() -> None:
    with pytest.raises(SystemExit):
        load_client_config([])
