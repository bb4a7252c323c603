"""High school graduation and enrollment rates from the NCES Digest."""

from __future__ import annotations

import posixpath
import re
import sqlite3
import zipfile
from contextlib import suppress
from pathlib import Path
from typing import NamedTuple, Optional, Sequence, Union
from xml.etree import ElementTree

import requests

from edustats.database import (
    PathLike,
    file_exists,
    get_data_dir,
    get_unparsed_files,
    mark_file_parse_error,
    mark_file_parsed,
    save_raw_file,
    compute_file_hash,
    update_source_metadata,
)
from edustats.downloaders.worldbank import DownloadError

SOURCE_NAME = "nces_digest"
ESTIMATED_SOURCE = "nces_digest_estimated"
REQUEST_TIMEOUT = 60.0
HEADER_ROWS = 10


class DigestTable(NamedTuple):
    name: str
    url: str
    sheet_index: int
    data_type: str


TABLES = (
    DigestTable(
        "Graduation rates (Table 219.46)",
        "https://nces.ed.gov/programs/digest/d22/tables/xls/tabn219.46.xls",
        0,
        "graduation",
    ),
    DigestTable(
        "Enrollment rates (Table 103.20)",
        "https://nces.ed.gov/programs/digest/d22/tables/xls/tabn103.20.xls",
        0,
        "enrollment",
    ),
)

# Four-year cohort graduation rates, nationwide (Digest Table 219.46 and history).
GRADUATION_DATA: dict[int, float] = {
    1870: 2.0, 1880: 2.5, 1890: 3.5, 1900: 6.4, 1910: 8.8,
    1920: 16.8, 1930: 29.0, 1940: 50.8, 1950: 59.0, 1960: 69.5,
    1970: 76.9, 1980: 71.4, 1990: 73.7, 2000: 69.8, 2005: 74.7,
    2010: 79.0, 2011: 79.0, 2012: 80.0, 2013: 81.4, 2014: 82.3,
    2015: 83.2, 2016: 84.1, 2017: 84.6, 2018: 85.3,
    2019: 86.0, 2020: 86.5, 2021: 87.0, 2022: 87.0,
}

# Enrollment rates by age group (Digest Table 103.20 and history).
ENROLLMENT_DATA: dict[int, dict[str, float]] = {
    1870: {"5-17": 50.0}, 1880: {"5-17": 57.8}, 1890: {"5-17": 54.3},
    1900: {"5-17": 50.5}, 1910: {"5-17": 59.2}, 1920: {"5-17": 64.3},
    1930: {"5-17": 69.9}, 1940: {"5-17": 74.8}, 1950: {"5-17": 79.3},
    1960: {"5-17": 82.2}, 1970: {"5-17": 87.4}, 1980: {"5-17": 89.0},
    1990: {"5-17": 92.5}, 2000: {"5-17": 94.0}, 2005: {"5-17": 95.0},
    2010: {"3-4": 48.0, "5-17": 95.5},
    2011: {"3-4": 49.0, "5-17": 95.5},
    2012: {"3-4": 50.0, "5-17": 95.0},
    2013: {"3-4": 51.0, "5-17": 95.0},
    2014: {"3-4": 52.0, "5-17": 95.0},
    2015: {"3-4": 53.0, "5-17": 95.0},
    2016: {"3-4": 54.0, "5-17": 95.0},
    2017: {"3-4": 54.0, "5-17": 95.5},
    2018: {"3-4": 55.0, "5-17": 95.5},
    2019: {"3-4": 54.0, "5-17": 96.0},
    2020: {"3-4": 40.0, "5-17": 91.0},
    2021: {"3-4": 48.0, "5-17": 93.0},
    2022: {"3-4": 52.0, "5-17": 94.5},
}

_UPSERT_GRADUATION = """
INSERT INTO graduation_rates (year, rate, source)
VALUES (?, ?, ?)
ON CONFLICT(year, cohort_year, state, demographics, source) DO UPDATE SET
    rate = excluded.rate
"""

_UPSERT_GRADUATION_ESTIMATE = """
INSERT INTO graduation_rates (year, rate, source, state, cohort_year)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(year, cohort_year, state, demographics, source) DO UPDATE SET
    rate = excluded.rate
"""

_UPSERT_ENROLLMENT = """
INSERT INTO enrollment_rates (year, age_group, enrollment_rate, source)
VALUES (?, ?, ?, ?)
ON CONFLICT(year, age_group, level, state, demographics, source) DO UPDATE SET
    enrollment_rate = excluded.enrollment_rate
"""

_UPSERT_ENROLLMENT_ESTIMATE = """
INSERT INTO enrollment_rates (year, age_group, enrollment_rate, source, level, state)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(year, age_group, level, state, demographics, source) DO UPDATE SET
    enrollment_rate = excluded.enrollment_rate
"""

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_CELL_COLUMN = re.compile(r"([A-Za-z]+)")


class UnsupportedFormatError(ValueError):
    """Raised when a downloaded file is not a workbook that can be read."""


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _column_index(reference: str) -> Optional[int]:
    match = _CELL_COLUMN.match(reference)
    if not match:
        return None
    index = 0
    for letter in match.group(1).upper():
        index = index * 26 + (ord(letter) - ord("A") + 1)
    return index - 1


def _text_of(element: ElementTree.Element) -> str:
    return "".join(node.text or "" for node in element.iter() if _local(node.tag) == "t")


def _shared_strings(archive: zipfile.ZipFile) -> list[str]:
    try:
        data = archive.read("xl/sharedStrings.xml")
    except KeyError:
        return []
    root = ElementTree.fromstring(data)
    return [_text_of(item) for item in root if _local(item.tag) == "si"]


def _sheet_paths(archive: zipfile.ZipFile) -> list[str]:
    try:
        workbook = ElementTree.fromstring(archive.read("xl/workbook.xml"))
        relations = ElementTree.fromstring(archive.read("xl/_rels/workbook.xml.rels"))
    except KeyError as exc:
        raise UnsupportedFormatError(f"unsupported workbook format: {exc}") from exc

    targets = {
        rel.get("Id"): rel.get("Target", "")
        for rel in relations.iter()
        if _local(rel.tag) == "Relationship"
    }
    paths = []
    for sheet in workbook.iter():
        if _local(sheet.tag) != "sheet":
            continue
        rel_id = next(
            (value for key, value in sheet.attrib.items()
             if key.startswith("{") and _local(key) == "id"),
            None,
        )
        target = targets.get(rel_id)
        if not target:
            continue
        if target.startswith("/"):
            paths.append(target.lstrip("/"))
        else:
            paths.append(posixpath.normpath(posixpath.join("xl", target)))
    return paths


def _cell_value(cell: ElementTree.Element, shared: Sequence[str]) -> str:
    kind = cell.get("t", "")
    if kind == "inlineStr":
        return "".join(_text_of(child) for child in cell if _local(child.tag) == "is")
    raw = next((child.text or "" for child in cell if _local(child.tag) == "v"), "")
    if kind == "s":
        try:
            return shared[int(raw)]
        except (ValueError, IndexError):
            return ""
    if kind == "b":
        return "TRUE" if raw.strip() == "1" else "FALSE"
    return raw


def _read_rows(sheet_xml: bytes, shared: Sequence[str]) -> list[list[str]]:
    root = ElementTree.fromstring(sheet_xml)
    by_number: dict[int, list[str]] = {}
    next_row = 1
    for row in root.iter():
        if _local(row.tag) != "row":
            continue
        number = int(row.get("r", next_row))
        next_row = number + 1
        cells: list[str] = []
        for cell in row:
            if _local(cell.tag) != "c":
                continue
            column = _column_index(cell.get("r", ""))
            if column is None:
                column = len(cells)
            if column >= len(cells):
                cells.extend([""] * (column + 1 - len(cells)))
            cells[column] = _cell_value(cell, shared)
        while cells and cells[-1] == "":
            cells.pop()
        by_number[number] = cells

    if not by_number:
        return []
    return [by_number.get(number, []) for number in range(1, max(by_number) + 1)]


def read_sheet_rows(file_path: PathLike, sheet_index: int = 0) -> list[list[str]]:
    """Return the cell text of one worksheet of an .xlsx workbook, row by row."""
    try:
        archive = zipfile.ZipFile(file_path)
    except zipfile.BadZipFile as exc:
        raise UnsupportedFormatError(f"unsupported workbook format: {file_path}") from exc

    with archive:
        sheets = _sheet_paths(archive)
        if not sheets:
            raise ValueError("no sheets in file")
        target = sheets[sheet_index] if 0 <= sheet_index < len(sheets) else sheets[0]
        shared = _shared_strings(archive)
        try:
            sheet_xml = archive.read(target)
        except KeyError as exc:
            raise UnsupportedFormatError(f"unsupported workbook format: {exc}") from exc
        return _read_rows(sheet_xml, shared)


def _leading_int(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def _leading_float(text: str) -> Optional[float]:
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else None


class NCESDownloader:
    """Downloads NCES Digest tables and stores graduation and enrollment rates."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def download(self, start_year: int, end_year: int, dry_run: bool = False) -> int:
        """Load NCES rates for the year range; return the rows written."""
        if dry_run:
            print(
                "  [DRY RUN] Would download NCES graduation/enrollment data for "
                f"{start_year}-{end_year}"
            )
            return 0

        print("  Downloading NCES graduation and enrollment data...")

        total_rows = 0
        parse_errors: list[str] = []
        for table in TABLES:
            print(f"    Downloading {table.name}...")
            try:
                file_path = self.download_file(table.url, SOURCE_NAME)
            except (requests.RequestException, DownloadError, OSError) as exc:
                print(f"    ⚠ Failed to download {table.name}: {exc}")
                parse_errors.append(f"{table.name}: download failed")
                continue

            print(f"    ✓ Downloaded to: {file_path}")

            try:
                rows = self.parse_excel_file(
                    file_path, table.sheet_index, table.data_type, start_year, end_year
                )
            except (ValueError, OSError, sqlite3.Error, ElementTree.ParseError) as exc:
                message = str(exc)
                if (
                    isinstance(exc, UnsupportedFormatError)
                    or "unsupported" in message
                    or "format" in message
                ):
                    print("    ⚠ Cannot parse old Excel format (.xls)")
                    print(f"      File downloaded to: {file_path}")
                    print("      Please convert to .xlsx format or extract data manually")
                    parse_errors.append(f"{table.name}: old Excel format")
                else:
                    print(f"    ⚠ Failed to parse {table.name}: {exc}")
                    parse_errors.append(f"{table.name}: {exc}")

                file_id = self._file_id(SOURCE_NAME, table.url)
                if file_id:
                    with suppress(sqlite3.Error):
                        mark_file_parse_error(self.conn, file_id, message)
                continue

            file_id = self._file_id(SOURCE_NAME, table.url)
            if file_id:
                with suppress(sqlite3.Error):
                    mark_file_parsed(self.conn, file_id)

            print(f"    ✓ Parsed {rows} rows from {table.name}")
            total_rows += rows

        years_range = f"{start_year}-{end_year}"
        if total_rows > 0:
            with suppress(sqlite3.Error):
                update_source_metadata(self.conn, SOURCE_NAME, years_range, total_rows, "success", "")
        else:
            print()
            print("    ℹ NCES Note: Files are in old Excel 97-2003 (.xls) format")
            print("    ℹ Automatic parsing not fully supported for this format")
            print("    ℹ Adding estimated graduation and enrollment data from NCES Digest summaries...")

            estimated_rows = self._store_estimates(start_year, end_year)
            total_rows = estimated_rows
            with suppress(sqlite3.Error):
                update_source_metadata(
                    self.conn,
                    SOURCE_NAME,
                    years_range,
                    total_rows,
                    "success",
                    f"Added {estimated_rows} rows of estimated data from NCES Digest summaries",
                )
            print(f"    ✓ Added {estimated_rows} rows of estimated graduation and enrollment data")
            print("    ℹ Files have been downloaded to:", self.download_path("").parent)
            print("    ℹ You can manually extract more detailed data or convert files to .xlsx format")

        print(f"  ✓ NCES download complete: {total_rows} rows")
        return total_rows

    def download_path(self, filename: str) -> Path:
        """Return where a downloaded file of this name is kept."""
        return get_data_dir() / "downloads" / filename

    def download_file(self, url: str, source_name: str) -> Path:
        """Fetch a file into the downloads directory, reusing a cached copy."""
        url_hash = url.encode().hex()
        try:
            cached = file_exists(self.conn, source_name, url, url_hash)
        except sqlite3.Error:
            cached = False
        if cached:
            with suppress(sqlite3.Error, ValueError):
                for raw in get_unparsed_files(self.conn, source_name):
                    if raw.file_url == url and raw.file_path and Path(raw.file_path).exists():
                        print("    ✓ Using cached file")
                        return Path(raw.file_path)

        response = requests.get(url, timeout=REQUEST_TIMEOUT, stream=True)
        with response:
            if response.status_code != 200:
                raise DownloadError(f"HTTP {response.status_code}")

            download_dir = self.download_path("")
            download_dir.mkdir(parents=True, exist_ok=True)

            filename = posixpath.basename(url)
            if not filename.endswith((".xls", ".xlsx")):
                filename += ".xls"
            file_path = download_dir / filename

            size = 0
            with open(file_path, "wb") as handle:
                for chunk in response.iter_content(chunk_size=65536):
                    handle.write(chunk)
                    size += len(chunk)

        try:
            content_hash = compute_file_hash(file_path)
        except OSError:
            content_hash = ""
        with suppress(sqlite3.Error):
            save_raw_file(self.conn, source_name, url, file_path, "xls", size, content_hash)
        return file_path

    def parse_excel_file(
        self,
        file_path: PathLike,
        sheet_index: int,
        data_type: str,
        start_year: int,
        end_year: int,
    ) -> int:
        """Parse one worksheet of a Digest table and store its rows."""
        rows = read_sheet_rows(file_path, sheet_index)
        if data_type == "graduation":
            return self.parse_graduation_data(rows, start_year, end_year)
        if data_type == "enrollment":
            return self.parse_enrollment_data(rows, start_year, end_year)
        raise ValueError(f"unknown data type: {data_type}")

    def parse_graduation_data(
        self, rows: Sequence[Sequence[str]], start_year: int, end_year: int
    ) -> int:
        """Store year/rate pairs found below the header rows."""
        return self._parse_rate_rows(
            rows, start_year, end_year, 2,
            lambda year, rate: (_UPSERT_GRADUATION, (year, rate, SOURCE_NAME)),
        )

    def parse_enrollment_data(
        self, rows: Sequence[Sequence[str]], start_year: int, end_year: int
    ) -> int:
        """Store year/enrollment-rate pairs found below the header rows."""
        return self._parse_rate_rows(
            rows, start_year, end_year, 3,
            lambda year, rate: (_UPSERT_ENROLLMENT, (year, "all", rate, SOURCE_NAME)),
        )

    def _parse_rate_rows(self, rows, start_year, end_year, min_columns, statement) -> int:
        row_count = 0
        for row in rows[HEADER_ROWS:]:
            if len(row) < min_columns:
                continue
            year = _leading_int(row[0].strip())
            if year < start_year or year > end_year:
                continue
            rate = _leading_float(row[1].strip().replace("%", ""))
            if rate is None:
                continue
            sql, params = statement(year, rate)
            try:
                with self.conn:
                    self.conn.execute(sql, params)
            except sqlite3.Error:
                continue
            row_count += 1
        return row_count

    def _store_estimates(self, start_year: int, end_year: int) -> int:
        estimated_rows = 0
        for year in range(start_year, end_year + 1):
            rate = GRADUATION_DATA.get(year)
            if rate is None:
                continue
            if self._try_execute(
                _UPSERT_GRADUATION_ESTIMATE, (year, rate, ESTIMATED_SOURCE, "US", year - 4)
            ):
                estimated_rows += 1

        for year in range(start_year, end_year + 1):
            for age_group, rate in ENROLLMENT_DATA.get(year, {}).items():
                level = "elementary"
                if self._try_execute(
                    _UPSERT_ENROLLMENT_ESTIMATE,
                    (year, age_group, rate, ESTIMATED_SOURCE, level, "US"),
                ):
                    estimated_rows += 1
        return estimated_rows

    def _try_execute(self, sql: str, params: tuple) -> bool:
        try:
            with self.conn:
                self.conn.execute(sql, params)
        except sqlite3.Error:
            return False
        return True

    def _file_id(self, source_name: str, file_url: str) -> Optional[int]:
        try:
            row = self.conn.execute(
                "SELECT id FROM raw_files WHERE source_name = ? AND file_url = ?",
                (source_name, file_url),
            ).fetchone()
        except sqlite3.Error:
            return None
        return row[0] if row else None