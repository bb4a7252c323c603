"""SQLite storage for downloaded education statistics."""

from __future__ import annotations

import hashlib
import os
import sqlite3
import sys
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

DATABASE_FILENAME = "edu_stats.db"
SCHEMA_FILENAME = "schema.sql"
SYSTEM_SCHEMA_PATH = Path("/usr/share/edu-stats/schema.sql")

DATA_TABLES = (
    "literacy_rates",
    "educational_attainment",
    "graduation_rates",
    "enrollment_rates",
    "test_proficiency",
    "early_childhood",
)

PathLike = Union[str, "os.PathLike[str]"]


@dataclass
class DatabaseInfo:
    """Size and schema summary of the database file."""

    size_bytes: int = 0
    schema_status: str = ""
    table_count: int = 0


@dataclass
class SourceMetadata:
    """Download bookkeeping for one data source."""

    name: str
    last_download: Optional[datetime]
    years_available: str
    row_count: int
    status: str


@dataclass
class RawFile:
    """A downloaded file recorded in the raw_files table."""

    id: int
    source_name: str
    file_url: str
    file_path: str
    file_type: str
    content_hash: str
    downloaded_at: datetime
    file_size: int
    parsed: bool
    parsed_at: Optional[datetime] = None
    parse_error: Optional[str] = None


def default_data_dir() -> Path:
    """Return the data directory, creating it if needed."""
    configured = os.environ.get("EDU_STATS_DATA_DIR")
    if configured:
        data_dir = Path(configured)
    elif xdg_data_home := os.environ.get("XDG_DATA_HOME"):
        data_dir = Path(xdg_data_home) / "edu-stats"
    else:
        try:
            data_dir = Path.home() / ".local" / "share" / "edu-stats"
        except (RuntimeError, KeyError):
            data_dir = Path("data")

    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(
            f"Warning: failed to create data directory {data_dir}: {exc}",
            file=sys.stderr,
        )
        data_dir = Path("data")
        with suppress(OSError):
            data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_database_path() -> Path:
    """Return the path of the database file."""
    return default_data_dir() / DATABASE_FILENAME


def get_data_dir() -> Path:
    """Return the directory holding the database file."""
    return get_database_path().parent


def open_database(path: Optional[PathLike] = None) -> sqlite3.Connection:
    """Open the database with foreign keys enabled."""
    target = Path(path) if path is not None else get_database_path()
    conn = sqlite3.connect(str(target))
    try:
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def schema_locations() -> list[Path]:
    """Return the places searched for schema.sql, in order."""
    exec_dir = Path(sys.argv[0]).resolve().parent if sys.argv and sys.argv[0] else Path.cwd()
    return [
        Path(SCHEMA_FILENAME),
        Path("..", "..", SCHEMA_FILENAME),
        Path("..", "..", "..", SCHEMA_FILENAME),
        exec_dir / SCHEMA_FILENAME,
        exec_dir / ".." / ".." / SCHEMA_FILENAME,
        SYSTEM_SCHEMA_PATH,
    ]


def apply_schema(
    conn: sqlite3.Connection, locations: Optional[Sequence[PathLike]] = None
) -> Path:
    """Run the first schema.sql found; return where it was found."""
    candidates = [Path(loc) for loc in (locations if locations is not None else schema_locations())]
    found: Optional[Path] = None
    script = ""
    last_error: Optional[OSError] = None
    for candidate in candidates:
        try:
            script = candidate.read_text()
        except OSError as exc:
            last_error = exc
            continue
        found = candidate
        break

    if found is None:
        message = f"failed to find schema.sql (searched {len(candidates)} locations)"
        if last_error is not None:
            message += f": {last_error}"
        raise FileNotFoundError(message)

    try:
        conn.executescript(script)
    except sqlite3.Error as exc:
        raise sqlite3.DatabaseError(f"failed to apply schema from {found}: {exc}") from exc

    print(f"✓ Database schema applied successfully (from {found})")
    return found


def get_database_info(
    conn: sqlite3.Connection, path: Optional[PathLike] = None
) -> DatabaseInfo:
    """Report file size, table count and whether a schema is present."""
    target = Path(path) if path is not None else get_database_path()
    info = DatabaseInfo()
    with suppress(OSError):
        info.size_bytes = target.stat().st_size

    (info.table_count,) = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
    ).fetchone()
    info.schema_status = "present" if info.table_count > 0 else "missing"
    return info


def _parse_timestamp(value: object) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1]
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_source_metadata(conn: sqlite3.Connection) -> list[SourceMetadata]:
    """Return metadata for every data source, ordered by name."""
    rows = conn.execute(
        """
        SELECT source_name, last_download, years_available, row_count, status
        FROM source_metadata
        ORDER BY source_name
        """
    ).fetchall()

    sources = []
    for name, last_download, years_available, row_count, status in rows:
        if years_available is None or row_count is None:
            raise ValueError(f"incomplete metadata for source {name!r}")
        sources.append(
            SourceMetadata(
                name=name,
                last_download=_parse_timestamp(last_download),
                years_available=years_available,
                row_count=row_count,
                status=status if status is not None else "unknown",
            )
        )
    return sources


def get_table_row_counts(conn: sqlite3.Connection) -> dict[str, int]:
    """Count the rows of every data table."""
    counts = {}
    for table in DATA_TABLES:
        (counts[table],) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    return counts


def record_pipeline_step(
    conn: sqlite3.Connection,
    step_name: str,
    status: str,
    years_covered: str = "",
    error: Optional[BaseException] = None,
) -> None:
    """Append a pipeline step event."""
    error_message = str(error) if error is not None else ""
    with conn:
        conn.execute(
            """
            INSERT INTO pipeline_metadata (step_name, status, years_covered, error_message)
            VALUES (?, ?, ?, ?)
            """,
            (step_name, status, years_covered, error_message),
        )


def get_last_completed_step(conn: sqlite3.Connection) -> str:
    """Return the name of the latest completed step, or an empty string."""
    row = conn.execute(
        """
        SELECT step_name
        FROM pipeline_metadata
        WHERE status = 'completed'
        ORDER BY timestamp DESC, id DESC
        LIMIT 1
        """
    ).fetchone()
    return row[0] if row else ""


def update_source_metadata(
    conn: sqlite3.Connection,
    source_name: str,
    years_available: str,
    row_count: int,
    status: str,
    error_message: str = "",
) -> None:
    """Insert or refresh the metadata row of a source."""
    with conn:
        conn.execute(
            """
            INSERT INTO source_metadata
                (source_name, last_download, years_available, row_count, status, error_message)
            VALUES (?, CURRENT_TIMESTAMP, ?, ?, ?, ?)
            ON CONFLICT(source_name) DO UPDATE SET
                last_download = CURRENT_TIMESTAMP,
                years_available = excluded.years_available,
                row_count = excluded.row_count,
                status = excluded.status,
                error_message = excluded.error_message
            """,
            (source_name, years_available, row_count, status, error_message),
        )


def save_raw_file(
    conn: sqlite3.Connection,
    source_name: str,
    file_url: str,
    file_path: PathLike,
    file_type: str,
    file_size: int,
    content_hash: str,
) -> None:
    """Record a downloaded file, resetting its parse state."""
    with conn:
        conn.execute(
            """
            INSERT INTO raw_files
                (source_name, file_url, file_path, file_type, content_hash, file_size, downloaded_at)
            VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(source_name, file_url) DO UPDATE SET
                file_path = excluded.file_path,
                content_hash = excluded.content_hash,
                file_size = excluded.file_size,
                downloaded_at = CURRENT_TIMESTAMP,
                parsed = 0,
                parsed_at = NULL,
                parse_error = NULL
            """,
            (source_name, file_url, str(file_path), file_type, content_hash, file_size),
        )


def get_unparsed_files(conn: sqlite3.Connection, source_name: str) -> list[RawFile]:
    """Return the files of a source not yet parsed, newest first."""
    rows = conn.execute(
        """
        SELECT id, source_name, file_url, file_path, file_type, content_hash,
               downloaded_at, file_size, parsed
        FROM raw_files
        WHERE source_name = ? AND parsed = 0
        ORDER BY downloaded_at DESC
        """,
        (source_name,),
    ).fetchall()

    files = []
    for (file_id, source, url, path, file_type, content_hash,
         downloaded_at, file_size, parsed) in rows:
        downloaded = _parse_timestamp(downloaded_at)
        if downloaded is None:
            raise ValueError(f"raw file {file_id} has no download time")
        files.append(
            RawFile(
                id=file_id,
                source_name=source,
                file_url=url,
                file_path=path,
                file_type=file_type,
                content_hash=content_hash,
                downloaded_at=downloaded,
                file_size=file_size,
                parsed=bool(parsed),
            )
        )
    return files


def mark_file_parsed(conn: sqlite3.Connection, file_id: int) -> None:
    """Mark a file as successfully parsed."""
    with conn:
        conn.execute(
            """
            UPDATE raw_files
            SET parsed = 1, parsed_at = CURRENT_TIMESTAMP, parse_error = NULL
            WHERE id = ?
            """,
            (file_id,),
        )


def mark_file_parse_error(conn: sqlite3.Connection, file_id: int, parse_error: str) -> None:
    """Record why a file could not be parsed."""
    with conn:
        conn.execute(
            "UPDATE raw_files SET parse_error = ? WHERE id = ?",
            (parse_error, file_id),
        )


def file_exists(
    conn: sqlite3.Connection, source_name: str, file_url: str, content_hash: str
) -> bool:
    """Tell whether a file with this URL and hash is already recorded."""
    (count,) = conn.execute(
        """
        SELECT COUNT(*) FROM raw_files
        WHERE source_name = ? AND file_url = ? AND content_hash = ?
        """,
        (source_name, file_url, content_hash),
    ).fetchone()
    return count > 0


def compute_file_hash(file_path: PathLike) -> str:
    """Return the hex SHA-256 digest of a file's contents."""
    digest = hashlib.sha256()
    with open(file_path, "rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _iter_tables(conn: sqlite3.Connection) -> Iterable[str]:
    for (name,) in conn.execute("SELECT name FROM sqlite_master WHERE type='table'"):
        yield name