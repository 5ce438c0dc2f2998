"""Integration tests for the ingestion CLI against a local server."""

import json
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from src.cli.ingest import cli
from tests.helpers.market_server import LAST_MODIFIED, MarketHandler, run_market_server


@pytest.fixture
def base_url() -> Generator[str]:
    """Base URL of a local market server."""
    with run_market_server() as url:
        yield url


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    """CLI runner with fast, quiet settings."""
    monkeypatch.setenv("ESI_MAX_RETRIES", "0")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    monkeypatch.delenv("MARKET_SYSTEM_ID", raising=False)
    monkeypatch.delenv("MARKET_MAX_PAGES", raising=False)
    return CliRunner()


@pytest.mark.integration
class TestSnapshotCommand:
    """Tests for ``snapshot``."""

    def test_prints_summary(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """A successful pass prints the snapshot summary as JSON."""
        db = tmp_path / "cli.sqlite"
        result = runner.invoke(
            cli, ["snapshot", "--db", str(db), "--base-url", base_url]
        )

        assert result.exit_code == 0, result.output
        summary = json.loads(result.stdout)
        assert summary["item_count"] == 2
        assert summary["pages_fetched"] == 2
        assert summary["last_modified"] == LAST_MODIFIED
        assert summary["fallback_used"] is False
        assert summary["metrics"]["total_requests"] == 2
        assert db.exists()

    def test_system_zero_keeps_whole_region(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """``--system 0`` disables the system filter."""
        result = runner.invoke(
            cli,
            [
                "snapshot",
                "--db",
                str(tmp_path / "cli.sqlite"),
                "--base-url",
                base_url,
                "--system",
                "0",
            ],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["item_count"] == 3

    def test_max_pages_limits_the_pass(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """``--max-pages 1`` reads page 1 only."""
        result = runner.invoke(
            cli,
            [
                "snapshot",
                "--db",
                str(tmp_path / "cli.sqlite"),
                "--base-url",
                base_url,
                "--max-pages",
                "1",
            ],
        )

        assert result.exit_code == 0, result.output
        summary = json.loads(result.stdout)
        assert summary["pages_fetched"] == 1
        assert summary["item_count"] == 1

    def test_failure_exits_non_zero(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """A failing backend exits with status 1 and no stdout summary."""
        MarketHandler.fail_status = 503
        result = runner.invoke(
            cli,
            ["snapshot", "--db", str(tmp_path / "cli.sqlite"), "--base-url", base_url],
        )

        assert result.exit_code == 1
        assert "internal_error" in result.output
        assert "item_count" not in result.output


@pytest.mark.integration
class TestHistoryCommand:
    """Tests for ``history``."""

    def test_prints_rows_per_type(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """Rows are keyed by type id."""
        result = runner.invoke(
            cli,
            [
                "history",
                "34",
                "--db",
                str(tmp_path / "cli.sqlite"),
                "--base-url",
                base_url,
            ],
        )

        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert list(rows) == ["34"]
        assert rows["34"][0] == {"date": "2024-01-01", "average": 5.1, "volume": 1000}

    def test_repeat_run_on_same_db(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """A second run against the same database prints the same rows."""
        args = [
            "history",
            "34",
            "--db",
            str(tmp_path / "cli.sqlite"),
            "--base-url",
            base_url,
        ]

        first = runner.invoke(cli, args)
        second = runner.invoke(cli, args)

        assert second.exit_code == 0, second.output
        assert json.loads(second.stdout) == json.loads(first.stdout)
        assert len(json.loads(second.stdout)["34"]) == 2

    def test_requires_type_ids(self, runner: CliRunner) -> None:
        """At least one type id is mandatory."""
        result = runner.invoke(cli, ["history"])

        assert result.exit_code == 2


@pytest.mark.integration
class TestCacheStatsCommand:
    """Tests for ``cache-stats``."""

    def test_counts_entries_after_snapshot(
        self, runner: CliRunner, base_url: str, tmp_path: Path
    ) -> None:
        """Each fetched page leaves one cache entry."""
        db = str(tmp_path / "cli.sqlite")
        runner.invoke(cli, ["snapshot", "--db", db, "--base-url", base_url])

        result = runner.invoke(cli, ["cache-stats", "--db", db, "--json"])

        assert result.exit_code == 0, result.output
        stats = json.loads(result.stdout)
        assert stats["entries"] == 2
        assert stats["schema_version"] >= 1

    def test_text_output(self, runner: CliRunner, tmp_path: Path) -> None:
        """Without ``--json`` a readable table is printed."""
        result = runner.invoke(
            cli, ["cache-stats", "--db", str(tmp_path / "empty.sqlite")]
        )

        assert result.exit_code == 0, result.output
        assert "Cache Database Statistics" in result.output
        assert "Entries: 0" in result.output
