# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the sigclient command line."""

import argparse
import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sigclient.cli import (
    _parse_header,
    _parse_json,
    cli,
    cmd_init,
    cmd_request,
)
from sigclient.config import ConfigError
from sigclient.executor import ApiError, ApiResponse, ResponseMeta
from tests.vectors import BASE_URL


def _mock_client(result: object) -> MagicMock:
    client = MagicMock()
    client.__enter__.return_value = client
    client.request.return_value = result
    return client


class TestCmdInit:
    """Tests for cmd_init."""

    def test_creates_stub(self, tmp_path: Path) -> None:
        path = tmp_path / "sigclient" / "sigclient.yaml"
        with patch("sigclient.cli.get_config_path", return_value=path):
            assert cmd_init([]) == 0
        text = path.read_text()
        assert "base_url:" in text
        assert "!env SIGCLIENT_IDENTITY_POOL_ID" in text

    def test_existing_untouched(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "sigclient.yaml"
        path.write_text("custom: true\n")
        with patch("sigclient.cli.get_config_path", return_value=path):
            assert cmd_init([]) == 0
        assert path.read_text() == "custom: true\n"
        assert "already exists" in capsys.readouterr().out


class TestArgumentParsing:
    """Tests for header and body argument parsers."""

    def test_header(self) -> None:
        assert _parse_header("X-Trace:  abc ") == ("X-Trace", "abc")

    def test_header_with_colon_in_value(self) -> None:
        assert _parse_header("X-Url: http://a") == ("X-Url", "http://a")

    @pytest.mark.parametrize("value", ["no-colon", ": value"])
    def test_bad_header(self, value: str) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_header(value)

    def test_json(self) -> None:
        assert _parse_json('{"a": [1]}') == {"a": [1]}

    def test_bad_json(self) -> None:
        with pytest.raises(argparse.ArgumentTypeError, match="Invalid JSON"):
            _parse_json("{")


class TestCmdRequest:
    """Tests for cmd_request."""

    def test_success(self, capsys: pytest.CaptureFixture[str]) -> None:
        result = ApiResponse(
            data={"items": [1]},
            meta=ResponseMeta(200, {}, BASE_URL + "items", 1),
        )
        client = _mock_client(result)
        with (
            patch("sigclient.cli.configure_logging"),
            patch("sigclient.cli.ClientConfig.from_yaml") as mock_load,
            patch(
                "sigclient.client.SignedApiClient", return_value=client
            ) as mock_cls,
        ):
            code = cmd_request(
                [
                    "items",
                    "-X",
                    "POST",
                    "-d",
                    '{"n": 1}',
                    "-H",
                    "X-Trace: abc",
                    "--config",
                    "/tmp/c.yaml",
                ]
            )

        assert code == 0
        mock_load.assert_called_once_with(Path("/tmp/c.yaml"))
        mock_cls.assert_called_once_with(mock_load.return_value)
        client.request.assert_called_once_with(
            "items",
            method="POST",
            body={"n": 1},
            headers={"X-Trace": "abc"},
        )
        assert json.loads(capsys.readouterr().out) == {"items": [1]}

    def test_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        result = ApiError(status=404, data={"message": "nope"}, attempts=1)
        with (
            patch("sigclient.cli.configure_logging"),
            patch("sigclient.cli.ClientConfig.from_yaml"),
            patch(
                "sigclient.client.SignedApiClient",
                return_value=_mock_client(result),
            ),
        ):
            assert cmd_request(["items"]) == 1
        err = json.loads(capsys.readouterr().err)
        assert err == {
            "status": 404,
            "data": {"message": "nope"},
            "message": None,
        }

    def test_config_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("sigclient.cli.configure_logging"),
            patch(
                "sigclient.cli.ClientConfig.from_yaml",
                side_effect=ConfigError("Config file not found: x"),
            ),
        ):
            assert cmd_request(["items"]) == 2
        assert "Config file not found" in capsys.readouterr().err

    def test_debug_flag(self) -> None:
        with (
            patch("sigclient.cli.configure_logging") as mock_logging,
            patch(
                "sigclient.cli.ClientConfig.from_yaml",
                side_effect=ConfigError("x"),
            ),
        ):
            cmd_request(["items", "--debug"])
        mock_logging.assert_called_once_with(level=logging.DEBUG)


class TestCli:
    """Tests for the cli dispatcher."""

    def test_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("sys.argv", ["sigclient"]),
            pytest.raises(SystemExit) as exc_info,
        ):
            cli()
        assert exc_info.value.code == 0
        assert "usage: sigclient" in capsys.readouterr().out

    def test_unknown_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        with (
            patch("sys.argv", ["sigclient", "frobnicate"]),
            pytest.raises(SystemExit) as exc_info,
        ):
            cli()
        assert exc_info.value.code == 2
        assert "unknown command 'frobnicate'" in capsys.readouterr().err

    def test_dispatch(self) -> None:
        handler = MagicMock(return_value=0)
        with (
            patch("sys.argv", ["sigclient", "init", "extra"]),
            patch.dict("sigclient.cli._DISPATCH", {"init": handler}),
            pytest.raises(SystemExit) as exc_info,
        ):
            cli()
        assert exc_info.value.code == 0
        handler.assert_called_once_with(["extra"])
