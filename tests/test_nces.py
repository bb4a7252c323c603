import io
import sqlite3
import zipfile

import pytest
import responses

from edustats.database import compute_file_hash, save_raw_file
from edustats.downloaders.nces import (
    ESTIMATED_SOURCE,
    SOURCE_NAME,
    TABLES,
    NCESDownloader,
    UnsupportedFormatError,
    read_sheet_rows,
)

SCHEMA = """
CREATE TABLE source_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL UNIQUE,
    last_download DATETIME,
    years_available TEXT,
    row_count INTEGER DEFAULT 0,
    status TEXT,
    error_message TEXT
);
CREATE TABLE raw_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL,
    file_url TEXT NOT NULL,
    file_path TEXT,
    file_type TEXT,
    content_hash TEXT,
    downloaded_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    file_size INTEGER,
    parsed INTEGER DEFAULT 0,
    parsed_at DATETIME,
    parse_error TEXT,
    UNIQUE(source_name, file_url)
);
CREATE TABLE graduation_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    year INTEGER NOT NULL,
    cohort_year INTEGER,
    rate REAL,
    state TEXT,
    demographics TEXT,
    source TEXT NOT NULL,
    UNIQUE(year, cohort_year, state, demographics, source)
);
CREATE TABLE enrollment_rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    year INTEGER NOT NULL,
    age_group TEXT NOT NULL,
    enrollment_rate REAL,
    level TEXT,
    state TEXT,
    demographics TEXT,
    source TEXT NOT NULL,
    UNIQUE(year, age_group, level, state, demographics, source)
);
"""

GRADUATION_URL = TABLES[0].url
ENROLLMENT_URL = TABLES[1].url


@pytest.fixture
def conn(tmp_path, monkeypatch):
    monkeypatch.setenv("EDU_STATS_DATA_DIR", str(tmp_path))
    connection = sqlite3.connect(":memory:")
    connection.executescript(SCHEMA)
    yield connection
    connection.close()


def _header_rows():
    return [["header"]] * 10


def _make_xlsx(rows_xml, shared=()):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(
            "xl/workbook.xml",
            '<workbook xmlns="urn:x-main" xmlns:r="urn:x-rel"><sheets>'
            '<sheet name="First" sheetId="1" r:id="rId1"/>'
            '<sheet name="Second" sheetId="2" r:id="rId2"/>'
            "</sheets></workbook>",
        )
        archive.writestr(
            "xl/_rels/workbook.xml.rels",
            '<Relationships xmlns="urn:x-pkg">'
            '<Relationship Id="rId1" Target="worksheets/sheet1.xml"/>'
            '<Relationship Id="rId2" Target="worksheets/sheet2.xml"/>'
            "</Relationships>",
        )
        strings = "".join(f"<si><t>{text}</t></si>" for text in shared)
        archive.writestr("xl/sharedStrings.xml", f'<sst xmlns="urn:x-main">{strings}</sst>')
        archive.writestr(
            "xl/worksheets/sheet1.xml",
            f'<worksheet xmlns="urn:x-main"><sheetData>{rows_xml}</sheetData></worksheet>',
        )
        archive.writestr(
            "xl/worksheets/sheet2.xml",
            '<worksheet xmlns="urn:x-main"><sheetData>'
            '<row r="1"><c r="A1" t="inlineStr"><is><t>second</t></is></c></row>'
            "</sheetData></worksheet>",
        )
    return buffer.getvalue()


def test_dry_run_writes_nothing(conn):
    assert NCESDownloader(conn).download(2000, 2020, dry_run=True) == 0
    assert conn.execute("SELECT COUNT(*) FROM source_metadata").fetchone() == (0,)


def test_parse_graduation_data_skips_headers_and_out_of_range(conn):
    rows = _header_rows() + [
        ["2010", "79.5%"],
        ["Total", "12"],
        [" 2011 ", "80"],
        ["2030", "90"],
        ["2012"],
        ["2013", "n/a"],
    ]
    count = NCESDownloader(conn).parse_graduation_data(rows, 2000, 2020)
    assert count == 2
    stored = conn.execute("SELECT year, rate, source FROM graduation_rates ORDER BY year").fetchall()
    assert stored == [(2010, 79.5, SOURCE_NAME), (2011, 80.0, SOURCE_NAME)]


def test_parse_graduation_data_ignores_first_ten_rows(conn):
    rows = [["2010", "79.5"]] * 10
    assert NCESDownloader(conn).parse_graduation_data(rows, 2000, 2020) == 0


def test_parse_enrollment_data_requires_three_columns(conn):
    rows = _header_rows() + [["2015", "95.0", "x"], ["2016", "94.0"]]
    count = NCESDownloader(conn).parse_enrollment_data(rows, 2000, 2020)
    assert count == 1
    stored = conn.execute(
        "SELECT year, age_group, enrollment_rate, source FROM enrollment_rates"
    ).fetchall()
    assert stored == [(2015, "all", 95.0, SOURCE_NAME)]


def test_read_sheet_rows_pads_missing_rows_and_cells(tmp_path):
    path = tmp_path / "book.xlsx"
    path.write_bytes(
        _make_xlsx(
            '<row r="1"><c r="A1" t="s"><v>0</v></c></row>'
            '<row r="3"><c r="A3"><v>2015</v></c><c r="C3"><v>83.2</v></c></row>',
            shared=["Title"],
        )
    )
    rows = read_sheet_rows(path, 0)
    assert rows == [["Title"], [], ["2015", "", "83.2"]]


def test_read_sheet_rows_selects_sheet_and_falls_back(tmp_path):
    path = tmp_path / "book.xlsx"
    path.write_bytes(_make_xlsx('<row r="1"><c r="A1"><v>1</v></c></row>'))
    assert read_sheet_rows(path, 1) == [["second"]]
    assert read_sheet_rows(path, 7) == read_sheet_rows(path, 0)


def test_read_sheet_rows_rejects_legacy_format(tmp_path):
    path = tmp_path / "old.xls"
    path.write_bytes(b"\xd0\xcf\x11\xe0 legacy workbook")
    with pytest.raises(UnsupportedFormatError):
        read_sheet_rows(path, 0)


def test_parse_excel_file_rejects_unknown_data_type(conn, tmp_path):
    path = tmp_path / "book.xlsx"
    path.write_bytes(_make_xlsx('<row r="1"><c r="A1"><v>1</v></c></row>'))
    with pytest.raises(ValueError, match="unknown data type: other"):
        NCESDownloader(conn).parse_excel_file(path, 0, "other", 2000, 2020)


def test_download_path_is_under_data_dir(conn, tmp_path):
    assert NCESDownloader(conn).download_path("a.xls") == tmp_path / "downloads" / "a.xls"


def test_download_file_saves_and_records(conn, tmp_path):
    body = b"spreadsheet bytes"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, GRADUATION_URL, body=body, status=200)
        path = NCESDownloader(conn).download_file(GRADUATION_URL, SOURCE_NAME)
    assert path == tmp_path / "downloads" / "tabn219.46.xls"
    assert path.read_bytes() == body
    size, content_hash, file_type = conn.execute(
        "SELECT file_size, content_hash, file_type FROM raw_files WHERE file_url = ?",
        (GRADUATION_URL,),
    ).fetchone()
    assert size == len(body)
    assert content_hash == compute_file_hash(path)
    assert file_type == "xls"


def test_download_file_uses_cached_copy(conn, tmp_path):
    cached = tmp_path / "cached.xls"
    cached.write_bytes(b"cached")
    save_raw_file(conn, SOURCE_NAME, GRADUATION_URL, cached, "xls", 6, GRADUATION_URL.encode().hex())
    with responses.RequestsMock() as rsps:
        path = NCESDownloader(conn).download_file(GRADUATION_URL, SOURCE_NAME)
        assert len(rsps.calls) == 0
    assert path == cached


def test_download_file_raises_on_http_error(conn, tmp_path):
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, GRADUATION_URL, status=404)
        with pytest.raises(Exception) as excinfo:
            NCESDownloader(conn).download_file(GRADUATION_URL, SOURCE_NAME)
    assert "HTTP 404" in str(excinfo.value)
    assert conn.execute("SELECT COUNT(*) FROM raw_files").fetchone() == (0,)
    assert not (tmp_path / "downloads" / "tabn219.46.xls").exists()


def test_download_falls_back_to_estimates_when_unavailable(conn):
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, GRADUATION_URL, status=404)
        rsps.add(responses.GET, ENROLLMENT_URL, status=404)
        total = NCESDownloader(conn).download(2010, 2012)

    graduation = conn.execute(
        "SELECT year, rate, state, cohort_year, source FROM graduation_rates ORDER BY year"
    ).fetchall()
    enrollment_count = conn.execute("SELECT COUNT(*) FROM enrollment_rates").fetchone()[0]
    assert total == len(graduation) + enrollment_count
    assert [row[0] for row in graduation] == [2010, 2011, 2012]
    assert graduation[0] == (2010, 79.0, "US", 2006, ESTIMATED_SOURCE)
    assert conn.execute(
        "SELECT enrollment_rate, level FROM enrollment_rates WHERE year = 2010 AND age_group = '3-4'"
    ).fetchone() == (48.0, "elementary")
    status, rows = conn.execute(
        "SELECT status, row_count FROM source_metadata WHERE source_name = ?", (SOURCE_NAME,)
    ).fetchone()
    assert status == "success"
    assert rows == total


def test_download_records_parse_error_for_legacy_files(conn, tmp_path):
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, GRADUATION_URL, body=b"\xd0\xcf\x11\xe0 old", status=200)
        rsps.add(responses.GET, ENROLLMENT_URL, body=b"\xd0\xcf\x11\xe0 old", status=200)
        total = NCESDownloader(conn).download(1900, 1900)

    errors = conn.execute("SELECT parse_error, parsed FROM raw_files").fetchall()
    assert len(errors) == 2
    assert all(error and parsed == 0 for error, parsed in errors)
    assert (tmp_path / "downloads" / "tabn103.20.xls").exists()
    assert conn.execute("SELECT year, rate FROM graduation_rates").fetchall() == [(1900, 6.4)]
    assert conn.execute(
        "SELECT age_group, enrollment_rate FROM enrollment_rates"
    ).fetchall() == [("5-17", 50.5)]
    assert total == 2


def test_download_parses_xlsx_tables(conn):
    padding = '<row r="1"><c r="A1" t="inlineStr"><is><t>Table</t></is></c></row>'
    graduation = _make_xlsx(
        padding + '<row r="11"><c r="A11"><v>2015</v></c><c r="B11"><v>83.2</v></c></row>'
    )
    enrollment = _make_xlsx(
        padding
        + '<row r="11"><c r="A11"><v>2015</v></c><c r="B11"><v>95</v></c>'
        '<c r="C11" t="inlineStr"><is><t>x</t></is></c></row>'
    )
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, GRADUATION_URL, body=graduation, status=200)
        rsps.add(responses.GET, ENROLLMENT_URL, body=enrollment, status=200)
        total = NCESDownloader(conn).download(2010, 2020)

    assert total == 2
    assert conn.execute("SELECT year, rate FROM graduation_rates").fetchall() == [(2015, 83.2)]
    assert conn.execute(
        "SELECT year, age_group, enrollment_rate FROM enrollment_rates"
    ).fetchall() == [(2015, "all", 95.0)]
    assert conn.execute("SELECT parsed FROM raw_files").fetchall() == [(1,), (1,)]
    assert conn.execute(
        "SELECT status, row_count, error_message FROM source_metadata"
    ).fetchone() == ("success", 2, "")