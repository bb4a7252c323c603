import sqlite3
from contextlib import closing
from datetime import datetime, timedelta, timezone

import pytest

from edustats import database

TEST_SCHEMA = """
CREATE TABLE source_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL UNIQUE,
    last_download DATETIME,
    years_available TEXT,
    row_count INTEGER DEFAULT 0,
    status TEXT,
    error_message TEXT
);

CREATE TABLE pipeline_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    step_name TEXT NOT NULL,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
    status TEXT NOT NULL,
    years_covered TEXT,
    error_message TEXT
);

CREATE TABLE literacy_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    year INTEGER NOT NULL,
    age_group TEXT NOT NULL,
    rate REAL,
    gender TEXT,
    source TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(year, age_group, gender, source)
);
"""

RAW_FILES_SCHEMA = """
CREATE TABLE raw_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL,
    file_url TEXT NOT NULL,
    file_path TEXT,
    file_type TEXT,
    content_hash TEXT,
    downloaded_at DATETIME,
    file_size INTEGER,
    parsed INTEGER DEFAULT 0,
    parsed_at DATETIME,
    parse_error TEXT,
    UNIQUE(source_name, file_url)
);
"""


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.executescript(TEST_SCHEMA + RAW_FILES_SCHEMA)
    yield connection
    connection.close()


def test_update_source_metadata(conn):
    database.update_source_metadata(conn, "test_source", "2020-2022", 100, "success", "")
    sources = database.get_source_metadata(conn)
    assert len(sources) == 1
    assert sources[0].name == "test_source"
    assert sources[0].row_count == 100
    assert sources[0].years_available == "2020-2022"
    assert sources[0].status == "success"


def test_update_source_metadata_upserts(conn):
    database.update_source_metadata(conn, "test_source", "2020-2022", 100, "success", "")
    database.update_source_metadata(conn, "test_source", "1970-2025", 7, "partial", "note")
    sources = database.get_source_metadata(conn)
    assert len(sources) == 1
    assert sources[0].row_count == 7
    assert sources[0].status == "partial"
    assert sources[0].years_available == "1970-2025"


def test_source_metadata_last_download_is_recent_utc(conn):
    database.update_source_metadata(conn, "test_source", "2020-2022", 1, "success", "")
    (source,) = database.get_source_metadata(conn)
    assert source.last_download.tzinfo is not None
    assert abs(datetime.now(timezone.utc) - source.last_download) < timedelta(minutes=5)


def test_source_metadata_null_status_is_unknown(conn):
    conn.execute(
        "INSERT INTO source_metadata (source_name, years_available, row_count) VALUES ('x', '', 0)"
    )
    (source,) = database.get_source_metadata(conn)
    assert source.status == "unknown"
    assert source.last_download is None


def test_source_metadata_ordered_by_name(conn):
    database.update_source_metadata(conn, "zeta", "", 0, "failed", "err")
    database.update_source_metadata(conn, "alpha", "", 0, "success", "")
    assert [s.name for s in database.get_source_metadata(conn)] == ["alpha", "zeta"]


def test_record_pipeline_step(conn):
    database.record_pipeline_step(conn, "test_step", "completed", "2020-2022", None)
    assert database.get_last_completed_step(conn) == "test_step"


def test_last_completed_step_empty(conn):
    assert database.get_last_completed_step(conn) == ""


def test_last_completed_step_ignores_failures(conn):
    database.record_pipeline_step(conn, "first", "completed", "2020-2022")
    database.record_pipeline_step(conn, "second", "failed", "", ValueError("boom"))
    assert database.get_last_completed_step(conn) == "first"
    (message,) = conn.execute(
        "SELECT error_message FROM pipeline_metadata WHERE step_name = 'second'"
    ).fetchone()
    assert message == "boom"


def test_get_table_row_counts_requires_all_tables(conn):
    conn.execute(
        "INSERT INTO literacy_rates (year, age_group, rate, source) VALUES (2020, 'adult', 99.0, 'test')"
    )
    with pytest.raises(sqlite3.OperationalError):
        database.get_table_row_counts(conn)


def test_get_table_row_counts_full(conn):
    for table in database.DATA_TABLES:
        if table != "literacy_rates":
            conn.execute(f"CREATE TABLE {table} (id INTEGER PRIMARY KEY)")
    conn.execute(
        "INSERT INTO literacy_rates (year, age_group, rate, source) VALUES (2020, 'adult', 99.0, 'test')"
    )
    counts = database.get_table_row_counts(conn)
    assert set(counts) == set(database.DATA_TABLES)
    assert counts["literacy_rates"] == 1
    assert counts["early_childhood"] == 0


def test_apply_schema_from_given_location(tmp_path):
    missing = tmp_path / "missing.sql"
    schema = tmp_path / "schema.sql"
    schema.write_text("CREATE TABLE IF NOT EXISTS test_table (id INTEGER PRIMARY KEY, name TEXT);")
    with closing(sqlite3.connect(":memory:")) as connection:
        found = database.apply_schema(connection, [missing, schema])
        tables = {row[0] for row in connection.execute("SELECT name FROM sqlite_master")}
    assert found == schema
    assert "test_table" in tables


def test_apply_schema_is_idempotent(tmp_path):
    schema = tmp_path / "schema.sql"
    schema.write_text("CREATE TABLE IF NOT EXISTS test_table (id INTEGER PRIMARY KEY, name TEXT);")
    with closing(sqlite3.connect(":memory:")) as connection:
        database.apply_schema(connection, [schema])
        database.apply_schema(connection, [schema])
        info = database.get_database_info(connection, tmp_path / "absent.db")
    assert info.table_count == 1


def test_apply_schema_missing_file(tmp_path):
    with closing(sqlite3.connect(":memory:")) as connection:
        with pytest.raises(FileNotFoundError, match="searched 2 locations"):
            database.apply_schema(connection, [tmp_path / "a.sql", tmp_path / "b.sql"])


def test_apply_schema_invalid_sql(tmp_path):
    schema = tmp_path / "schema.sql"
    schema.write_text("CREATE TABLE broken (")
    with closing(sqlite3.connect(":memory:")) as connection:
        with pytest.raises(sqlite3.DatabaseError, match="failed to apply schema"):
            database.apply_schema(connection, [schema])


def test_database_info(tmp_path):
    db_path = tmp_path / "edu.db"
    with closing(database.open_database(db_path)) as connection:
        empty = database.get_database_info(connection, db_path)
        connection.executescript(TEST_SCHEMA)
        filled = database.get_database_info(connection, db_path)
    assert empty.schema_status == "missing"
    assert empty.table_count == 0
    assert filled.schema_status == "present"
    assert filled.table_count == 3
    assert filled.size_bytes == db_path.stat().st_size


def test_open_database_enables_foreign_keys(tmp_path):
    with closing(database.open_database(tmp_path / "edu.db")) as connection:
        (enabled,) = connection.execute("PRAGMA foreign_keys").fetchone()
    assert enabled == 1


def test_default_data_dir_from_env(tmp_path, monkeypatch):
    target = tmp_path / "custom"
    monkeypatch.setenv("EDU_STATS_DATA_DIR", str(target))
    assert database.default_data_dir() == target
    assert target.is_dir()
    assert database.get_database_path() == target / "edu_stats.db"
    assert database.get_data_dir() == target


def test_default_data_dir_from_xdg(tmp_path, monkeypatch):
    monkeypatch.delenv("EDU_STATS_DATA_DIR", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert database.default_data_dir() == tmp_path / "edu-stats"


def test_schema_locations_start_with_current_directory():
    locations = database.schema_locations()
    assert locations[0].name == "schema.sql"
    assert str(locations[-1]) == "/usr/share/edu-stats/schema.sql"
    assert len(locations) == 6


def test_raw_file_lifecycle(conn, tmp_path):
    url = "https://example.com/table.xls"
    database.save_raw_file(conn, "src", url, tmp_path / "table.xls", "xls", 42, "abc")
    assert database.file_exists(conn, "src", url, "abc")
    assert not database.file_exists(conn, "src", url, "other")

    (raw,) = database.get_unparsed_files(conn, "src")
    assert raw.file_url == url
    assert raw.file_size == 42
    assert raw.parsed is False
    assert raw.file_path == str(tmp_path / "table.xls")

    database.mark_file_parse_error(conn, raw.id, "bad format")
    (error,) = conn.execute("SELECT parse_error FROM raw_files WHERE id = ?", (raw.id,)).fetchone()
    assert error == "bad format"

    database.mark_file_parsed(conn, raw.id)
    assert database.get_unparsed_files(conn, "src") == []

    database.save_raw_file(conn, "src", url, tmp_path / "table.xls", "xls", 43, "def")
    (again,) = database.get_unparsed_files(conn, "src")
    assert again.id == raw.id
    assert again.content_hash == "def"
    (count,) = conn.execute("SELECT COUNT(*) FROM raw_files").fetchone()
    assert count == 1


def test_compute_file_hash(tmp_path):
    empty = tmp_path / "empty"
    empty.write_bytes(b"")
    abc = tmp_path / "abc"
    abc.write_bytes(b"abc")
    assert database.compute_file_hash(empty) == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
    assert database.compute_file_hash(abc) == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_compute_file_hash_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        database.compute_file_hash(tmp_path / "nope")