"""
Tests for the command line interface.
"""

from __future__ import annotations

from typer.testing import CliRunner

from chatchain import __version__
from chatchain.cli.main import app

runner = CliRunner()


class TestCli:
    """Test the non-interactive commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_redacts_token(self, mock_env_vars: dict[str, str]) -> None:
        """Test that the configuration table never shows the bot token."""
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "BLOB_BACKEND" in result.output
        assert mock_env_vars["TELEGRAM_BOT_TOKEN"] not in result.output

    def test_inspect_unknown_chat(self, mock_env_vars: dict[str, str]) -> None:
        """Test inspecting a chat with nothing stored."""
        result = runner.invoke(app, ["inspect", "--", "-100"])

        assert result.exit_code == 0
        assert "Nothing stored" in result.output
