# edustats

`edu-stats` is a command-line tool. It collects US educational statistics
into a local SQLite database and writes them out as JSON files for a static
website.

It records these statistics:

- literacy rates
- educational attainment (bachelor's degree or higher, ages 25+)
- high-school graduation rates
- enrollment rates
- NAEP average scale scores
- kindergarten-entry readiness scores

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Before you start: schema.sql

The package does not include the database schema. You have to supply a
`schema.sql` file that creates these tables:

- `pipeline_metadata`
- `source_metadata`
- `raw_files`
- `literacy_rates`
- `educational_attainment`
- `graduation_rates`
- `enrollment_rates`
- `test_proficiency`
- `early_childhood`

The tool uses the first `schema.sql` it finds, checking these places in order:

1. the current directory
2. `../..`
3. `../../..`
4. the directory of the running program
5. two directories above the running program
6. `/usr/share/edu-stats/schema.sql`

## Usage

Create the database, or bring an existing one up to date:

```
edu-stats init      # apply schema.sql and list the tables with their row counts
edu-stats sync      # apply schema.sql again and report the table count
```

### Running the pipeline

Run the full pipeline:

```
edu-stats all --years=1970-2025
```

Before the steps start, the pipeline runs the status report. The steps then
run in this order:

1. `check-schema`
2. `download-worldbank`
3. `download-census`
4. `download-nces`
5. `download-naep`
6. `download-ecls`
7. `generate-assets`

The tool writes each step's start, completion or failure to
`pipeline_metadata`. On the next run, the pipeline starts again after the
last step that completed.

Options:

- `--years`: the year range, as `YYYY-YYYY`. The default is `1970-2025`.
- `--force`: run every step, ignoring earlier progress.
- `--dry-run`: the download steps only print what they would fetch. No step
  progress is recorded. The schema check and asset generation still run.

### Running one step

Each step can also be run on its own. Give `all`'s options before the
subcommand name:

```
edu-stats all --years=2000-2020 check-schema
edu-stats all --years=2000-2020 download-worldbank
edu-stats all --years=2000-2020 download-census
edu-stats all --years=2000-2020 download-nces
edu-stats all --years=2000-2020 download-naep
edu-stats all --years=2000-2020 download-ecls
edu-stats all generate-assets
```

### Other commands

```
edu-stats status     # database size, last downloads, row counts, source reachability
edu-stats version    # print the version
edu-stats upgrade    # replace the running program with the latest released binary
```

`upgrade` reads the release description from the URL in
`EDU_STATS_RELEASES_URL`, or from a built-in default if that variable is not
set. It downloads the first asset whose name contains the platform tag, for
example `linux-amd64`, and then replaces the running program file.

## What each source step stores

- **World Bank**: US literacy indicators from the World Bank API. The API
  returns no US values, so the tool stores NCES historical and basic-literacy
  figures instead, under the source `nces_historical`.
- **Census**: ACS 1-year estimates for 2010–2023 from the Census API. For
  earlier years it adds figures from published tables.
- **NCES**: downloads two Digest tables to `downloads/` inside the data
  directory. Only `.xlsx` workbooks can be parsed. When nothing is parsed,
  the tool stores built-in graduation and enrollment estimates.
- **NAEP**: checks the indicator endpoint. It then stores built-in long-term
  trend scores for reading and mathematics, grades 4 and 8.
- **ECLS**: stores built-in kindergarten-entry reading and math estimates.

## Generated assets

`generate-assets` writes `literacy.json`, `attainment.json`,
`graduation.json`, `enrollment.json`, `proficiency.json` and
`early_childhood.json`. Each file holds the yearly averages for one statistic.
A statistic with no data gets no file. The step always writes
`stats_index.json`.

Files go into the first `hugo/site/static/data` directory whose `hugo/site`
holds a `config.toml`. If there is none, they go into
`hugo/site/static/data` under the current directory.

## Where data is stored

The database file is `edu_stats.db`. Its directory is chosen in this order:

1. the directory named by `EDU_STATS_DATA_DIR`
2. `$XDG_DATA_HOME/edu-stats`
3. `~/.local/share/edu-stats`
4. `data` in the current directory, used when none of the above can be
   created

## What it does not do

- It does not ship a database schema. See above.
- It does not read Excel 97-2003 `.xls` files. The NCES Digest tables are
  published in that format, so they are kept on disk but not parsed.
- It does not fetch full NAEP or ECLS datasets. It stores only the figures
  built into the package.

## Library use

The modules can also be used from Python:

```python
from edustats.database import open_database, apply_schema, get_table_row_counts
from edustats.downloaders.ecls import ECLSDownloader

conn = open_database(":memory:")
apply_schema(conn, ["schema.sql"])
ECLSDownloader(conn).download(2010, 2020, False)
print(get_table_row_counts(conn))
```

Every downloader has the same `download(start_year, end_year, dry_run)`
method, and it returns the number of rows written. The downloaders are:

- `WorldBankDownloader`
- `CensusDownloader`
- `NCESDownloader`
- `NAEPDownloader`
- `ECLSDownloader`

`edustats.hugo.HugoGenerator(conn).generate_all(output_dir)` writes the JSON
assets and returns the paths it wrote.