"""Command line entry point: pipeline, schema management, status and upgrades."""

from __future__ import annotations

import re
import sqlite3
import sys
import time
from contextlib import closing, contextmanager, suppress
from dataclasses import dataclass
from functools import partial
from typing import Callable, Iterator, Optional, Sequence

import click

from edustats.database import (
    apply_schema,
    get_database_info,
    get_database_path,
    get_last_completed_step,
    open_database,
    record_pipeline_step,
    schema_locations,
)
from edustats.downloaders.census import CensusDownloader
from edustats.downloaders.ecls import ECLSDownloader
from edustats.downloaders.naep import NAEPDownloader
from edustats.downloaders.nces import NCESDownloader
from edustats.downloaders.worldbank import WorldBankDownloader
from edustats.hugo import HugoGenerator
from edustats.status import run_status
from edustats.upgrade import VERSION, run_upgrade

DEFAULT_YEARS = "1970-2025"

INIT_TABLES = (
    "pipeline_metadata",
    "source_metadata",
    "raw_files",
    "literacy_rates",
    "educational_attainment",
    "graduation_rates",
    "enrollment_rates",
    "test_proficiency",
    "early_childhood",
)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

ROOT_HELP = """A command-line tool for downloading and managing US educational statistics.

Downloads data from authoritative sources including World Bank, US Census Bureau,
NCES, NAEP, and ECLS. Stores data in SQLite and generates assets for Hugo website.
"""

ALL_HELP = """Run all pipeline steps: schema check, data downloads, processing, and Hugo asset generation.

Supports resumability - if interrupted, will continue from last successful step.
"""

INIT_HELP = """Initialize or sync the database schema from schema.sql.

\b
This command will:
  - Create the database file if it doesn't exist
  - Apply all tables, indexes, and constraints from schema.sql
  - Safe to run multiple times (uses CREATE TABLE IF NOT EXISTS)
  - Reports which tables were created or already existed
"""

SYNC_HELP = """Apply schema changes from schema.sql to the database.

\b
This command will:
  - Read schema.sql from the project root
  - Apply all CREATE TABLE IF NOT EXISTS statements
  - Add any new tables, indexes, or columns
  - Safe to run multiple times (idempotent)
  - Use this after updating schema.sql to migrate the database
"""


def _leading_int(text: str) -> Optional[int]:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else None


def parse_years(year_range: str) -> tuple[int, int]:
    """Parse a 'YYYY-YYYY' range into its start and end years."""
    parts = year_range.split("-")
    if len(parts) != 2:
        raise ValueError("invalid year range format, use YYYY-YYYY")
    start = _leading_int(parts[0])
    if start is None:
        raise ValueError(f"invalid start year: {parts[0]!r}")
    end = _leading_int(parts[1])
    if end is None:
        raise ValueError(f"invalid end year: {parts[1]!r}")
    if start > end:
        raise ValueError("start year must be before end year")
    return start, end


@contextmanager
def _connection() -> Iterator[sqlite3.Connection]:
    conn = open_database(get_database_path())
    with closing(conn):
        yield conn


def run_check_schema() -> None:
    """Apply schema.sql to the database."""
    with _connection() as conn:
        print("Checking database schema...")
        apply_schema(conn, schema_locations())


def _run_download(downloader_cls, start_year: int, end_year: int, dry_run: bool) -> None:
    with _connection() as conn:
        downloader_cls(conn).download(start_year, end_year, dry_run)


def run_generate_assets() -> None:
    """Write the Hugo JSON assets from the database."""
    with _connection() as conn:
        HugoGenerator(conn).generate_all()


def _record(
    conn: sqlite3.Connection,
    step_name: str,
    status: str,
    years_covered: str,
    error: Optional[str],
) -> None:
    with suppress(sqlite3.Error):
        with conn:
            record_pipeline_step(conn, step_name, status, years_covered, error)


def run_pipeline(start_year: int, end_year: int, dry_run: bool = False, force: bool = False) -> None:
    """Run every pipeline step, resuming after the last completed one unless forced."""
    print("Educational Stats CLI - Full Pipeline")
    print("=====================================")
    print(f"Year range: {start_year}-{end_year}")
    print(f"Dry run: {str(dry_run).lower()}")
    print()

    try:
        conn = open_database(get_database_path())
    except sqlite3.Error as exc:
        raise RuntimeError(f"failed to open database: {exc}") from exc

    with closing(conn):
        print("📊 Running status check...")
        try:
            run_status()
        except Exception as exc:  # the status report is advisory only
            print(f"Warning: status check failed: {exc}")
            print()

        steps: list[tuple[str, Callable[[], None]]] = [
            ("check-schema", run_check_schema),
            ("download-worldbank", partial(_run_download, WorldBankDownloader, start_year, end_year, dry_run)),
            ("download-census", partial(_run_download, CensusDownloader, start_year, end_year, dry_run)),
            ("download-nces", partial(_run_download, NCESDownloader, start_year, end_year, dry_run)),
            ("download-naep", partial(_run_download, NAEPDownloader, start_year, end_year, dry_run)),
            ("download-ecls", partial(_run_download, ECLSDownloader, start_year, end_year, dry_run)),
            ("generate-assets", run_generate_assets),
        ]

        try:
            last_step = get_last_completed_step(conn) or ""
        except sqlite3.Error as exc:
            print(f"Warning: could not check last completed step: {exc}")
            last_step = ""

        start_index = 0
        if last_step and not force:
            print(f"📌 Resuming from last completed step: {last_step}")
            print("   Use --force to re-download all data")
            print()
            names = [name for name, _ in steps]
            if last_step in names:
                start_index = names.index(last_step) + 1
        elif force:
            print("🔄 Force mode: re-downloading all data")
            print()

        years_covered = f"{start_year}-{end_year}"
        for number, (name, step) in enumerate(steps[start_index:], start=start_index + 1):
            print()
            print(f"🔄 Step {number}/{len(steps)}: {name}")
            print("-" * 50)

            started = time.perf_counter()
            if not dry_run:
                _record(conn, name, "started", "", None)

            try:
                step()
            except Exception as exc:
                print(f"❌ Failed: {exc}")
                if not dry_run:
                    _record(conn, name, "failed", "", str(exc))
                raise RuntimeError(f"pipeline failed at step {name}: {exc}") from exc

            print(f"✓ Completed in {time.perf_counter() - started:.2f}s")
            if not dry_run:
                _record(conn, name, "completed", years_covered, None)

    print()
    print("✅ Pipeline completed successfully!")
    print()
    print("Next steps:")
    print("  1. View data: edu-stats status")
    print("  2. Run website: cd hugo/site && hugo server")


def _apply_and_verify(conn: sqlite3.Connection, path, action: str):
    try:
        apply_schema(conn, schema_locations())
    except (OSError, sqlite3.Error) as exc:
        raise RuntimeError(f"failed to {action} schema: {exc}") from exc
    try:
        return get_database_info(conn, path)
    except sqlite3.Error as exc:
        raise RuntimeError(f"failed to verify database: {exc}") from exc


def run_init() -> None:
    """Create the database if needed, apply the schema and list the tables."""
    path = get_database_path()
    print("Initializing database from schema.sql...")
    print(f"Database location: {path}")
    print()

    try:
        conn = open_database(path)
    except sqlite3.Error as exc:
        raise RuntimeError(f"failed to open database: {exc}") from exc

    with closing(conn):
        print()
        print("Verifying database structure...")
        info = _apply_and_verify(conn, path, "apply")

        print(f"✓ Database file: {path}")
        print(f"✓ Total tables: {info.table_count}")
        print(f"✓ Schema status: {info.schema_status}")

        print()
        print("Tables created:")
        for table in INIT_TABLES:
            try:
                (exists,) = conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=?",
                    (table,),
                ).fetchone()
            except sqlite3.Error:
                continue
            if not exists:
                continue
            try:
                (row_count,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            except sqlite3.Error:
                row_count = 0
            print(f"  ✓ {table:<30} ({row_count} rows)")

    print()
    print("✅ Database initialization complete!")
    print()
    print("Next steps:")
    print("  1. Check status: edu-stats status")
    print("  2. Download data: edu-stats all --years=1970-2025")
    print()
    print("Note: Database location can be changed by setting EDU_STATS_DATA_DIR environment variable")


def run_sync() -> None:
    """Apply schema.sql to the existing database and report the result."""
    print("Syncing database schema from schema.sql...")
    print()

    path = get_database_path()
    try:
        conn = open_database(path)
    except sqlite3.Error as exc:
        raise RuntimeError(f"failed to open database: {exc}") from exc

    with closing(conn):
        print()
        print("Verifying schema...")
        info = _apply_and_verify(conn, path, "sync")
        print(f"✓ Total tables: {info.table_count}")
        print(f"✓ Schema status: {info.schema_status}")

    print()
    print("✅ Schema sync complete!")


@dataclass(frozen=True)
class _PipelineOptions:
    start_year: int
    end_year: int
    dry_run: bool


@click.group(invoke_without_command=True, short_help="Educational Statistics CLI Tool", help=ROOT_HELP)
@click.pass_context
def _cli(ctx: click.Context) -> None:
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@_cli.command("status", short_help="Show database and data source status")
def _status() -> None:
    """Display database status, last download times, row counts, and data source connectivity."""
    run_status()


@_cli.group("all", invoke_without_command=True, short_help="Run the complete data pipeline", help=ALL_HELP)
@click.option("--years", default=DEFAULT_YEARS, show_default=True,
              help="Year range to download (format: YYYY-YYYY)")
@click.option("--dry-run", is_flag=True, help="Simulate without downloading data")
@click.option("--force", is_flag=True, help="Force re-download all data (ignore resume)")
@click.pass_context
def _all(ctx: click.Context, years: str, dry_run: bool, force: bool) -> None:
    start_year, end_year = parse_years(years)
    ctx.obj = _PipelineOptions(start_year, end_year, dry_run)
    if ctx.invoked_subcommand is None:
        run_pipeline(start_year, end_year, dry_run, force)


@_all.command("check-schema", short_help="Check and apply database schema")
def _check_schema() -> None:
    """Check and apply database schema."""
    run_check_schema()


def _download_command(name: str, summary: str, downloader_cls) -> None:
    @_all.command(name, short_help=summary, help=summary + ".")
    @click.pass_obj
    def _command(options: _PipelineOptions) -> None:
        _run_download(downloader_cls, options.start_year, options.end_year, options.dry_run)


_download_command("download-worldbank", "Download literacy data from World Bank", WorldBankDownloader)
_download_command("download-census", "Download educational attainment from Census Bureau", CensusDownloader)
_download_command("download-nces", "Download graduation/enrollment from NCES", NCESDownloader)
_download_command("download-naep", "Download test proficiency from NAEP", NAEPDownloader)
_download_command("download-ecls", "Download early childhood metrics from NCES ECLS", ECLSDownloader)


@_all.command("generate-assets", short_help="Generate Hugo JSON assets from database")
def _generate_assets() -> None:
    """Generate Hugo JSON assets from database."""
    run_generate_assets()


@_cli.command("version", short_help="Show version information")
def _version() -> None:
    """Show version information."""
    print(f"edu-stats version {VERSION}")
    print("Educational Statistics CLI Tool")


@_cli.command("upgrade", short_help="Upgrade to the latest version")
def _upgrade() -> None:
    """Check for and install the latest version from the published releases."""
    run_upgrade()


@_cli.command("init", short_help="Initialize the database with schema.sql", help=INIT_HELP)
def _init() -> None:
    run_init()


@_cli.command("sync", short_help="Sync database schema from schema.sql", help=SYNC_HELP)
def _sync() -> None:
    run_sync()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the command line; return the process exit status."""
    args = list(argv) if argv is not None else None
    try:
        _cli.main(args=args, prog_name="edu-stats", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        return exc.exit_code
    except click.exceptions.Abort:
        print("Aborted!", file=sys.stderr)
        return 1
    except Exception as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())