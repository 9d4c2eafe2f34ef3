"""Tests for CLI server and password resolution."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from asyncrcon.cli import (
    EXIT_OK,
    EXIT_RCON_ERROR,
    build_parser,
    resolve_password,
    resolve_server,
    run,
)
from asyncrcon.config import AppConfig, RconConfig, ServerConfig
from asyncrcon.errors import AuthenticationFailed, ConnectionRefused, RequestTimedOut


def _make_config(**overrides) -> AppConfig:
    """Build an AppConfig with sensible defaults."""
    defaults = {
        "default_server": "mc-1",
        "servers": {
            "mc-1": ServerConfig(name="MC-1", host="10.0.0.112"),
            "tf2": ServerConfig(name="TF2", host="10.0.0.114", port=27015),
        },
    }
    defaults.update(overrides)
    return AppConfig(**defaults)


class TestResolveServer:
    def test_resolve_by_config_name(self):
        name, server = resolve_server("tf2", _make_config())

        assert name == "tf2"
        assert server.host == "10.0.0.114"
        assert server.port == 27015

    def test_resolve_host_port(self):
        _name, server = resolve_server("192.168.1.1:25575", _make_config())

        assert server.host == "192.168.1.1"
        assert server.port == 25575

    def test_resolve_bare_hostname(self):
        _name, server = resolve_server("myserver.local", _make_config())

        assert server.host == "myserver.local"
        assert server.port == 25575

    def test_resolve_default_server(self):
        name, server = resolve_server(None, _make_config())

        assert name == "mc-1"
        assert server.host == "10.0.0.112"

    def test_resolve_no_default_no_servers(self):
        config = _make_config(default_server=None, servers={})

        with pytest.raises(SystemExit):
            resolve_server(None, config)

    def test_resolve_host_with_invalid_port(self):
        _name, server = resolve_server("myhost:notaport", _make_config())

        # Falls through to bare hostname treatment
        assert server.host == "myhost:notaport"
        assert server.port == 25575


class TestResolvePassword:
    def test_flag_wins(self, monkeypatch):
        monkeypatch.setenv("RCON_PASSWORD", "from-env")
        server = ServerConfig(name="s", host="h", password="from-profile")

        assert resolve_password("from-flag", server) == "from-flag"

    def test_environment_before_profile(self, monkeypatch):
        monkeypatch.setenv("RCON_PASSWORD", "from-env")
        server = ServerConfig(name="s", host="h", password="from-profile")

        assert resolve_password(None, server) == "from-env"

    def test_profile_password(self, monkeypatch):
        monkeypatch.delenv("RCON_PASSWORD", raising=False)
        server = ServerConfig(name="s", host="h", password="from-profile")

        assert resolve_password(None, server) == "from-profile"

    def test_prompts_when_nothing_configured(self, monkeypatch):
        monkeypatch.delenv("RCON_PASSWORD", raising=False)
        server = ServerConfig(name="s", host="h")

        with patch("asyncrcon.cli.prompt", return_value="typed") as mock_prompt:
            assert resolve_password(None, server) == "typed"

        assert mock_prompt.call_args.kwargs["is_password"] is True


class TestParser:
    def test_timeout_in_milliseconds(self):
        args = build_parser().parse_args(["mc-1", "--timeout", "250", "-c", "list"])

        assert args.timeout == 250
        assert args.command == "list"
        assert not args.verbose


CONFIG = RconConfig(host="localhost", password="secret")


class TestRun:
    def test_single_command(self, capsys):
        with patch("asyncrcon.cli.RconClient") as client_cls:
            client = client_cls.return_value
            client.connect = AsyncMock(return_value=client)
            client.send = AsyncMock(return_value="There are 0 players online")
            client.disconnect = AsyncMock()

            code = asyncio.run(run(CONFIG, "local", "list"))

        assert code == EXIT_OK
        assert "There are 0 players online" in capsys.readouterr().out
        client.send.assert_awaited_once_with("list")
        client.disconnect.assert_awaited_once()

    @pytest.mark.parametrize(
        "error", [ConnectionRefused("refused"), AuthenticationFailed("denied")]
    )
    def test_connect_failure(self, error, capsys):
        with patch("asyncrcon.cli.RconClient") as client_cls:
            client_cls.return_value.connect = AsyncMock(side_effect=error)

            code = asyncio.run(run(CONFIG, "local", "list"))

        assert code == EXIT_RCON_ERROR
        assert str(error) in capsys.readouterr().err

    def test_command_failure(self, capsys):
        with patch("asyncrcon.cli.RconClient") as client_cls:
            client = client_cls.return_value
            client.connect = AsyncMock(return_value=client)
            client.send = AsyncMock(side_effect=RequestTimedOut("too slow"))
            client.disconnect = AsyncMock()

            code = asyncio.run(run(CONFIG, "local", "list"))

        assert code == EXIT_RCON_ERROR
        assert "too slow" in capsys.readouterr().err
        client.disconnect.assert_awaited_once()
