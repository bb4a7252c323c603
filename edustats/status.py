"""Status report: database health, download history and source reachability."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timedelta, timezone
from typing import Optional

from edustats.database import (
    SourceMetadata,
    get_database_info,
    get_database_path,
    get_source_metadata,
    get_table_row_counts,
    open_database,
)
from edustats.utils import check_connectivity

STALE_AFTER = timedelta(days=30)
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

CONNECTIVITY_TARGETS = (
    ("World Bank API", "https://api.worldbank.org/v2/country/USA"),
    ("Census Bureau API", "https://api.census.gov/data.json"),
    ("NCES Website", "https://nces.ed.gov/programs/digest/"),
    ("NAEP API", "https://www.nationsreportcard.gov/"),
    ("NCES ECLS", "https://nces.ed.gov/ecls/"),
)

_STATUS_MARKS = {"failed": "❌", "partial": "⚠"}


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def describe_source(source: SourceMetadata, now: Optional[datetime] = None) -> str:
    """Return the status report line for one data source."""
    mark = _STATUS_MARKS.get(source.status, "✓")
    last_download = "never"
    if source.last_download is not None:
        moment = _as_utc(source.last_download)
        current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        last_download = moment.strftime(TIMESTAMP_FORMAT)
        if current - moment > STALE_AFTER:
            last_download += " (stale, >30 days old)"
    return (
        f"  {mark} {source.name}: {last_download} "
        f"({source.row_count} rows, years: {source.years_available})"
    )


def run_status() -> None:
    """Print the database, download and connectivity report."""
    print("Educational Stats CLI - Status Report")
    print("=====================================")
    print()
    database_path = get_database_path()
    print(f"📍 Database location: {database_path}")
    print()

    try:
        conn = open_database(database_path)
    except sqlite3.Error as exc:
        raise sqlite3.OperationalError(f"failed to open database: {exc}") from exc

    with closing(conn):
        print("📊 Database Status:")
        try:
            info = get_database_info(conn, database_path)
        except sqlite3.Error as exc:
            print(f"  ❌ Error reading database: {exc}")
        else:
            print(f"  ✓ Database: edu_stats.db ({info.size_bytes / 1024 / 1024:.2f} MB)")
            print(f"  ✓ Schema: {info.schema_status}")
            print(f"  ✓ Total tables: {info.table_count}")
        print()

        print("🕒 Last Data Retrieval:")
        try:
            sources = get_source_metadata(conn)
        except (sqlite3.Error, ValueError) as exc:
            print(f"  ❌ Error reading source metadata: {exc}")
        else:
            if not sources:
                print("  ⚠ No data downloaded yet. Run 'edu-stats all' to download data.")
            for source in sources:
                print(describe_source(source))
        print()

        print("📈 Data Summary:")
        try:
            counts = get_table_row_counts(conn)
        except sqlite3.Error as exc:
            print(f"  ❌ Error reading row counts: {exc}")
        else:
            for table, count in counts.items():
                print(f"  • {table + ':':<25} {count} rows")
            print(f"  • {'TOTAL:':<25} {sum(counts.values())} rows")
        print()

    print("🌐 Data Source Connectivity:")
    for name, url in CONNECTIVITY_TARGETS:
        if check_connectivity(url):
            print(f"  ✓ {name}: accessible")
        else:
            print(f"  ❌ {name}: unreachable")