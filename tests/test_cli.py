"""CLI tests using typer's CliRunner with the keyring patched out."""

from __future__ import annotations

from unittest.mock import patch

from typer.testing import CliRunner

from fontingest.cli import app

runner = CliRunner()


class TestConfigCommands:
    def test_set_api_key(self):
        with patch("fontingest.cli.keyring.set_password") as set_password:
            result = runner.invoke(app, ["config", "set-api-key", "secret-key-123"])
        assert result.exit_code == 0
        set_password.assert_called_once_with("fontingest-gemini", "api_key", "secret-key-123")

    def test_set_empty_key(self):
        result = runner.invoke(app, ["config", "set-api-key", "  "])
        assert result.exit_code == 1

    def test_get_api_key_masked(self):
        with patch("fontingest.cli.keyring.get_password", return_value="abcdefghijkl"):
            result = runner.invoke(app, ["config", "get-api-key"])
        assert result.exit_code == 0
        assert "abcdefgh****" in result.output
        assert "ijkl" not in result.output

    def test_get_api_key_missing(self):
        with patch("fontingest.cli.keyring.get_password", return_value=None):
            result = runner.invoke(app, ["config", "get-api-key"])
        assert result.exit_code == 1

    def test_remove_api_key(self):
        with patch("fontingest.cli.keyring.get_password", return_value="abc"), patch(
            "fontingest.cli.keyring.delete_password"
        ) as delete_password:
            result = runner.invoke(app, ["config", "remove-api-key"])
        assert result.exit_code == 0
        delete_password.assert_called_once()


class TestPreviewCommand:
    def test_groups_and_reports_failures(self, write_font, tmp_path):
        a = write_font("a.ttf", family="Inter")
        b = write_font("b.ttf", family="Inter", version="Version 2.000")
        bad = tmp_path / "bad.ttf"
        bad.write_bytes(b"junk")

        result = runner.invoke(app, ["preview", str(a), str(b), str(bad)])

        assert result.exit_code == 0, result.output
        assert "Inter" in result.output
        assert "bad.ttf" in result.output
        assert "1 conflicts" in result.output

    def test_spec_mismatch_warning(self, write_font):
        a = write_font("a.ttf", family="Inter")
        result = runner.invoke(app, ["preview", str(a), "--server-spec-version", "2.0.0"])
        assert result.exit_code == 0
        assert "mismatch" in result.output


class TestStatusCommands:
    def test_status_missing_db(self, tmp_path):
        result = runner.invoke(app, ["status", "--db", str(tmp_path / "none.db")])
        assert result.exit_code == 1

    def test_ingest_without_ai(self, write_font, tmp_path):
        config = tmp_path / "config.json"
        config.write_text('{"is_ai_enabled": false}')
        db = tmp_path / "fonts.db"
        font = write_font("a.ttf", family="Inter")

        result = runner.invoke(
            app,
            ["ingest", str(font), "--db", str(db), "--store", str(tmp_path / "objects"),
             "--config", str(config)],
        )
        assert result.exit_code == 0, result.output

        status = runner.invoke(app, ["status", "--db", str(db)])
        assert status.exit_code == 0
        assert "a.ttf" in status.output

        listing = runner.invoke(app, ["families", "--db", str(db)])
        assert listing.exit_code == 0
        assert "Inter" in listing.output

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "fontingest" in result.output
