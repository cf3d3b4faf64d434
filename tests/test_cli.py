"""
Tests for the command-line entry point (argument parsing and ``config``).
"""

import pytest

from session_bridge.__main__ import build_parser, main
from session_bridge.run_config import BridgeConfig


class TestParser:
    """argparse wiring."""

    def test_serve_flags(self):
        args = build_parser().parse_args(
            ["--upstream", "https://lms.example", "serve", "--port", "8080", "--headed"]
        )
        cfg = BridgeConfig.from_cli_args(args, environ={})
        assert args.command == "serve"
        assert cfg.upstream_base_url == "https://lms.example"
        assert cfg.port == 8080
        assert cfg.headless is False

    def test_login_arguments(self):
        args = build_parser().parse_args(["login", "alice", "--output", "jar.json"])
        assert args.username == "alice"
        assert args.output == "jar.json"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestConfigCommand:
    """``python -m session_bridge config``."""

    def test_prints_effective_config(self, monkeypatch, capsys):
        monkeypatch.delenv("UPSTREAM_BASE_URL", raising=False)
        monkeypatch.delenv("CANVAS_BASE_URL", raising=False)
        code = main(["--upstream", "https://lms.example", "config"])
        out = capsys.readouterr().out
        assert code == 0
        assert "https://lms.example" in out
        assert "keep_alive_interval_minutes" in out

    def test_reports_problems(self, capsys):
        code = main(["--upstream", "ftp://nope", "config"])
        assert code == 1
        assert "must be http(s)" in capsys.readouterr().out
