"""
Unit tests for the command-line entry point.
"""

import pytest

from coroserver.__main__ import build_config, build_parser, main


class TestParser:
    """Tests for argument parsing and config layering."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CORO_PORT", raising=False)
        args = build_parser().parse_args([])

        assert args.handler == "echo_lines"
        assert build_config(args).port == 8080

    def test_handler_port_used_without_flag(self, monkeypatch):
        monkeypatch.delenv("CORO_PORT", raising=False)
        args = build_parser().parse_args(["chat.py"])

        assert build_config(args, handler_port=7007).port == 7007

    def test_flag_beats_handler_port(self):
        args = build_parser().parse_args(["chat.py", "--port", "9000"])

        assert build_config(args, handler_port=7007).port == 9000

    def test_flags_beat_environment(self, monkeypatch):
        monkeypatch.setenv("CORO_MAX_CONNECTIONS", "5")
        monkeypatch.setenv("CORO_HOST", "0.0.0.0")

        args = build_parser().parse_args(["-c", "12", "--idle-timeout", "3"])
        config = build_config(args)

        assert config.max_connections == 12
        assert config.idle_timeout == 3.0
        assert config.host == "0.0.0.0"

    def test_log_options(self):
        args = build_parser().parse_args(["-l", "DEBUG", "--log-format", "json"])
        config = build_config(args)

        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert "coroserver" in capsys.readouterr().out


class TestMain:
    """Tests for main() exit codes that do not need a running server."""

    def test_unknown_handler(self, capsys):
        assert main(["no_such_module_anywhere:serve"]) == 1
        assert "cannot load handler" in capsys.readouterr().err

    def test_invalid_config(self, capsys):
        assert main(["echo_lines", "--max-connections", "0"]) == 1
        assert "invalid configuration" in capsys.readouterr().err

    def test_handler_port_of_wrong_type(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv("CORO_PORT", raising=False)
        script = tmp_path / "list_port.py"
        script.write_text(
            "port = [7]\n"
            "\n"
            "def on_connect(conn):\n"
            "    yield conn.receive_line()\n"
        )

        assert main([str(script)]) == 1
        assert "invalid configuration" in capsys.readouterr().err
