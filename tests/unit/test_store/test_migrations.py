"""Unit tests for schema migrations."""

import sqlite3
from collections.abc import Generator

import pytest

from src.store.migrations import (
    CURRENT_VERSION,
    MIGRATIONS,
    MigrationManager,
    get_migrations_to_apply,
)


@pytest.mark.unit
class TestMigrationConstants:
    """Tests for migration constants."""

    def test_migrations_in_order(self) -> None:
        """Test migrations are in ascending version order."""
        versions = [m.version for m in MIGRATIONS]
        assert versions == sorted(versions)

    def test_migrations_have_sql(self) -> None:
        """Test all migrations carry SQL to apply."""
        for migration in MIGRATIONS:
            assert migration.up_sql.strip()

    def test_current_version_matches_latest_migration(self) -> None:
        """Test current version matches the latest migration."""
        assert MIGRATIONS[-1].version == CURRENT_VERSION

    def test_pending_from_zero_and_current(self) -> None:
        """Test pending migration selection."""
        assert len(get_migrations_to_apply(0)) == len(MIGRATIONS)
        assert get_migrations_to_apply(CURRENT_VERSION) == []


@pytest.mark.unit
class TestMigrationManager:
    """Tests for MigrationManager."""

    @pytest.fixture
    def temp_db(self) -> Generator[sqlite3.Connection]:
        """Create a temporary in-memory database."""
        conn = sqlite3.connect(":memory:")
        yield conn
        conn.close()

    def test_get_current_version_zero_when_empty(
        self, temp_db: sqlite3.Connection
    ) -> None:
        """Test version is 0 when no migrations applied."""
        assert MigrationManager(temp_db).get_current_version() == 0

    def test_apply_migrations_idempotent(self, temp_db: sqlite3.Connection) -> None:
        """Test applying migrations twice is idempotent."""
        manager = MigrationManager(temp_db)

        assert manager.apply_migrations() == [m.version for m in MIGRATIONS]
        assert manager.apply_migrations() == []
        assert manager.get_current_version() == CURRENT_VERSION

    def test_cache_entry_schema(self, temp_db: sqlite3.Connection) -> None:
        """Test the cache_entry table has the expected columns."""
        MigrationManager(temp_db).apply_migrations()

        columns = {row[1] for row in temp_db.execute("PRAGMA table_info(cache_entry)")}

        assert columns == {
            "cache_key",
            "url",
            "etag",
            "expires_at",
            "last_modified",
            "fetched_at",
            "http_status",
        }

    def test_cache_key_is_primary_key(self, temp_db: sqlite3.Connection) -> None:
        """Test that duplicate keys are rejected at the schema level."""
        MigrationManager(temp_db).apply_migrations()
        insert = (
            "INSERT INTO cache_entry (cache_key, url, fetched_at, http_status) "
            "VALUES ('k', 'u', '2024-01-01T00:00:00+00:00', 200)"
        )
        temp_db.execute(insert)

        with pytest.raises(sqlite3.IntegrityError):
            temp_db.execute(insert)
