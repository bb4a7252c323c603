"""Bachelor's degree attainment from the Census Bureau ACS API and published tables."""

from __future__ import annotations

import sqlite3
from contextlib import suppress
from typing import Any, Optional

import requests

from edustats.database import update_source_metadata

SOURCE_NAME = "census_attainment"
HISTORICAL_SOURCE = f"{SOURCE_NAME}_historical"
ACS_URL = (
    "https://api.census.gov/data/{year}/acs/acs1"
    "?get=NAME,B15003_022E,B15003_001E&for=us:*"
)
ACS_FIRST_YEAR = 2010
ACS_LAST_YEAR = 2023
REQUEST_TIMEOUT = 60.0
AGE_GROUP = "25plus"
EDUCATION_LEVEL = "bachelors_plus"

# Percent of adults 25+ with a bachelor's degree or higher (Census historical tables).
HISTORICAL_ATTAINMENT: dict[int, float] = {
    1940: 4.6, 1950: 6.2, 1960: 7.7, 1970: 10.7, 1975: 13.9,
    1980: 16.2, 1985: 19.4, 1990: 21.3, 1995: 23.0, 2000: 25.6,
    2005: 27.7, 2006: 28.0, 2007: 28.7, 2008: 29.4, 2009: 29.5,
}

_UPSERT = """
INSERT INTO educational_attainment (year, age_group, education_level, percentage, source)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(year, age_group, education_level, gender, race, source) DO UPDATE SET
    percentage = excluded.percentage
"""


def _as_number(value: Any) -> float:
    """Read an ACS cell as a number; anything unreadable counts as zero."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _fetch_year(year: int) -> Optional[list[list[Any]]]:
    """Return the ACS table for a year, or None after reporting why it is missing."""
    try:
        response = requests.get(ACS_URL.format(year=year), timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        print(f"    ⚠ Failed to fetch year {year}: {exc}")
        return None

    with response:
        if response.status_code != 200:
            print(f"    ⚠ Year {year} unavailable (HTTP {response.status_code})")
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            print(f"    ⚠ Failed to parse year {year}: {exc}")
            return None

    if not isinstance(payload, list) or not all(isinstance(row, list) for row in payload):
        print(f"    ⚠ Failed to parse year {year}: expected an array of arrays")
        return None
    return payload


class CensusDownloader:
    """Stores the share of adults 25+ holding a bachelor's degree or higher."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def download(self, start_year: int, end_year: int, dry_run: bool = False) -> int:
        """Load attainment data for the year range; return the rows written."""
        if dry_run:
            print(
                "  [DRY RUN] Would download Census educational attainment for "
                f"{start_year}-{end_year}"
            )
            return 0

        print("  Downloading Census educational attainment data...")

        total_rows = 0
        for year in range(max(ACS_FIRST_YEAR, start_year), min(end_year, ACS_LAST_YEAR) + 1):
            table = _fetch_year(year)
            if table is None:
                continue
            if len(table) < 2:
                print(f"    ⚠ No data for year {year}")
                continue

            for row in table[1:]:
                if len(row) < 3:
                    continue
                bachelors = _as_number(row[1])
                total = _as_number(row[2])
                if total == 0:
                    continue
                percentage = bachelors / total * 100
                try:
                    with self.conn:
                        self.conn.execute(
                            _UPSERT, (year, AGE_GROUP, EDUCATION_LEVEL, percentage, SOURCE_NAME)
                        )
                except sqlite3.Error as exc:
                    print(f"    Warning: failed to insert year {year}: {exc}")
                    continue
                total_rows += 1

            print(f"    ✓ Imported year {year}")

        years_range = f"{start_year}-{end_year}"

        print(
            "    Adding historical educational attainment data "
            f"(startYear={start_year}, endYear={end_year})..."
        )
        historical_added = 0
        for year in range(start_year, ACS_FIRST_YEAR):
            percent = HISTORICAL_ATTAINMENT.get(year)
            if percent is None:
                continue
            try:
                with self.conn:
                    self.conn.execute(
                        _UPSERT, (year, AGE_GROUP, EDUCATION_LEVEL, percent, HISTORICAL_SOURCE)
                    )
            except sqlite3.Error as exc:
                print(f"    ⚠ Failed to insert historical year {year}: {exc}")
                continue
            total_rows += 1
            historical_added += 1
            print(f"    ✓ Added historical year {year} ({percent:.1f}%)")

        if historical_added > 0:
            print(f"    ✓ Added {historical_added} historical data points")

        with suppress(sqlite3.Error):
            if total_rows > 0:
                update_source_metadata(
                    self.conn, SOURCE_NAME, years_range, total_rows, "success",
                    "Includes historical data from Census tables",
                )
            else:
                update_source_metadata(
                    self.conn, SOURCE_NAME, years_range, 0, "partial",
                    "No data available for requested range",
                )

        print(f"  ✓ Census download complete: {total_rows} rows (1940-present)")
        print("    ℹ Historical data sourced from Census Bureau published tables")
        return total_rows