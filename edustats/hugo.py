"""JSON data assets for the Hugo site, built from the statistics database."""

from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from edustats.database import PathLike

STATS_INDEX: dict[str, str] = {
    "literacy": "Literacy Rates",
    "attainment": "Educational Attainment",
    "graduation": "High School Graduation Rates",
    "enrollment": "Enrollment Rates",
    "proficiency": "Test Proficiency (NAEP)",
    "early_childhood": "Early Childhood Metrics",
}


@dataclass
class DataPoint:
    """One year's value of a statistic."""

    year: int
    value: float
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out an empty label."""
        result: dict[str, Any] = {"year": self.year, "value": self.value}
        if self.label:
            result["label"] = self.label
        return result


@dataclass
class StatData:
    """A named time series with its description and source."""

    name: str
    description: str
    source: str
    years: list[DataPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form written for the site."""
        return {
            "name": self.name,
            "description": self.description,
            "source": self.source,
            "data": [point.to_dict() for point in self.years],
        }


def _default_locations() -> list[Path]:
    tail = Path("hugo", "site", "static", "data")
    return [
        tail,
        Path("..", "..") / tail,
        Path("..", "..", "..") / tail,
        Path(os.environ.get("HOME", ""), "src", "proficiency-comparison") / tail,
    ]


def find_output_dir(locations: Optional[Sequence[PathLike]] = None) -> Path:
    """Pick the first location whose Hugo site has a config.toml, else the first."""
    candidates = [Path(loc) for loc in (locations if locations is not None else _default_locations())]
    if not candidates:
        raise ValueError("no output locations given")
    for candidate in candidates:
        if (candidate.parent.parent / "config.toml").exists():
            return candidate
    return candidates[0]


def _write_json(path: Path, payload: Any, sort_keys: bool = False) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False, sort_keys=sort_keys)
        handle.write("\n")


class HugoGenerator:
    """Builds the per-statistic JSON files the site charts are drawn from."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def generate_all(self, output_dir: Optional[PathLike] = None) -> list[Path]:
        """Write every non-empty statistic and the index; return the files written."""
        print("  Generating Hugo JSON assets...")
        target = Path(output_dir) if output_dir is not None else find_output_dir()
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OSError(f"failed to create output directory {target}: {exc}") from exc
        print(f"    Output directory: {target}")

        generators: list[tuple[str, str, Callable[[], StatData]]] = [
            ("Literacy Rates", "literacy.json", self.generate_literacy_data),
            ("Educational Attainment", "attainment.json", self.generate_attainment_data),
            ("Graduation Rates", "graduation.json", self.generate_graduation_data),
            ("Enrollment Rates", "enrollment.json", self.generate_enrollment_data),
            ("Test Proficiency", "proficiency.json", self.generate_proficiency_data),
            ("Early Childhood", "early_childhood.json", self.generate_early_childhood_data),
        ]

        written = []
        for name, filename, generate in generators:
            try:
                data = generate()
            except sqlite3.Error as exc:
                print(f"    Warning: failed to generate {name}: {exc}")
                continue
            if not data.years:
                print(f"    ⚠ {name}: no data available")
                continue
            path = target / filename
            _write_json(path, data.to_dict())
            written.append(path)
            print(f"    ✓ Generated {filename} ({len(data.years)} data points)")

        written.append(self.generate_stats_index(target))
        print("  ✓ Hugo asset generation complete")
        return written

    def _series(self, sql: str, name: str, description: str, source: str) -> StatData:
        data = StatData(name=name, description=description, source=source)
        for year, value in self.conn.execute(sql):
            if year is None or value is None:
                continue
            data.years.append(DataPoint(year=int(year), value=float(value)))
        return data

    def generate_literacy_data(self) -> StatData:
        """Average adult (15+) literacy rate per year."""
        return self._series(
            """
            SELECT year, AVG(rate) AS avg_rate
            FROM literacy_rates
            WHERE age_group = 'adult_15plus'
            GROUP BY year
            ORDER BY year
            """,
            "Literacy Rates",
            "Adult literacy rates (15+)",
            "World Bank / UNESCO",
        )

    def generate_attainment_data(self) -> StatData:
        """Average bachelor's-or-higher percentage per year."""
        return self._series(
            """
            SELECT year, AVG(percentage) AS avg_pct
            FROM educational_attainment
            WHERE education_level = 'bachelors_plus'
            GROUP BY year
            ORDER BY year
            """,
            "Educational Attainment",
            "Percentage with bachelor's degree or higher (25+)",
            "US Census Bureau",
        )

    def generate_graduation_data(self) -> StatData:
        """Average high school graduation rate per year."""
        return self._series(
            """
            SELECT year, AVG(rate) AS avg_rate
            FROM graduation_rates
            GROUP BY year
            ORDER BY year
            """,
            "High School Graduation Rates",
            "Percentage graduating from high school",
            "NCES",
        )

    def generate_enrollment_data(self) -> StatData:
        """Average enrollment rate per year."""
        return self._series(
            """
            SELECT year, AVG(enrollment_rate) AS avg_rate
            FROM enrollment_rates
            GROUP BY year
            ORDER BY year
            """,
            "Enrollment Rates",
            "School enrollment rates by level",
            "NCES",
        )

    def generate_proficiency_data(self) -> StatData:
        """Average NAEP grade 8 reading score per year."""
        return self._series(
            """
            SELECT year, AVG(avg_score) AS avg_score
            FROM test_proficiency
            WHERE subject = 'reading' AND grade = 8
            GROUP BY year
            ORDER BY year
            """,
            "Test Proficiency",
            "NAEP Reading scores (Grade 8)",
            "NAEP",
        )

    def generate_early_childhood_data(self) -> StatData:
        """Average early childhood metric value per year."""
        return self._series(
            """
            SELECT year, AVG(metric_value) AS avg_value
            FROM early_childhood
            GROUP BY year
            ORDER BY year
            """,
            "Early Childhood Metrics",
            "Early literacy and readiness indicators",
            "NCES ECLS",
        )

    def generate_stats_index(self, output_dir: PathLike) -> Path:
        """Write stats_index.json naming every statistic; return its path."""
        path = Path(output_dir) / "stats_index.json"
        _write_json(path, STATS_INDEX, sort_keys=True)
        return path