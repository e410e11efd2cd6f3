"""Tests for the command-line entry point."""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from main import main, parse_args


class TestParseArgs:
    def test_defaults_to_scan(self) -> None:
        args = parse_args([])
        assert args.command == "scan"
        assert args.config == "config/settings.yaml"
        assert args.export is None

    def test_scan_source(self) -> None:
        args = parse_args(["scan-source", "psc", "--export", "json", "-v"])
        assert args.command == "scan-source"
        assert args.source_id == "psc"
        assert args.export == "json"
        assert args.verbose is True

    def test_sources(self) -> None:
        args = parse_args(["sources", "--config", "other.yaml"])
        assert args.command == "sources"
        assert args.config == "other.yaml"


class TestMain:
    def test_missing_config_exits(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["scan", "--config", str(tmp_path / "missing.yaml")])
        assert exc.value.code == 1
        assert "Error loading config" in capsys.readouterr().err

    def test_sources_lists_configuration(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text(
            f"database:\n  path: {tmp_path / 'jobs.db'}\n"
            "sources:\n"
            "  - id: psc\n"
            "    url: https://psc.example.gov.in/notices\n"
            "    enabled: false\n"
        )
        main(["sources", "--config", str(config)])
        out = capsys.readouterr().out
        assert "1 sources configured" in out
        assert "psc [static-page, disabled] https://psc.example.gov.in/notices" in out
        assert "last scanned: never" in out

    def test_scan_source_unknown_exits(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text(f"database:\n  path: {tmp_path / 'jobs.db'}\n")
        with patch("main.setup_logging"), pytest.raises(SystemExit):
            main(["scan-source", "nope", "--config", str(config)])
        assert "Error [NOT_FOUND]: Unknown source 'nope'" in capsys.readouterr().err

    def test_sources_unopenable_database_exits(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("plain file")
        config = tmp_path / "settings.yaml"
        config.write_text(f"database:\n  path: {blocker / 'jobs.db'}\n")
        with pytest.raises(SystemExit) as exc:
            main(["sources", "--config", str(config)])
        assert exc.value.code == 1
        assert "Error opening database" in capsys.readouterr().err

    def test_sources_corrupt_database_exits(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        db_path = tmp_path / "jobs.db"
        db_path.write_bytes(b"this is not a sqlite database" * 100)
        config = tmp_path / "settings.yaml"
        config.write_text(f"database:\n  path: {db_path}\n")
        with pytest.raises(SystemExit) as exc:
            main(["sources", "--config", str(config)])
        assert exc.value.code == 1
        assert "Error opening database" in capsys.readouterr().err

    def test_sources_read_failure_closes_connection(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        config = tmp_path / "settings.yaml"
        config.write_text(f"database:\n  path: {tmp_path / 'jobs.db'}\n")
        conn = MagicMock()
        with (
            patch("main.init_db", return_value=conn),
            patch("main.get_source_state", side_effect=sqlite3.OperationalError("disk I/O error")),
            pytest.raises(SystemExit),
        ):
            main(["sources", "--config", str(config)])
        conn.close.assert_called_once()
        assert "Error reading database" in capsys.readouterr().err
