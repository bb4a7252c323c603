[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "edustats"
version = "1.0.0"
description = "Download US educational statistics into SQLite and generate JSON assets for a static website"
requires-python = ">=3.10"
keywords = ["education", "statistics", "sqlite", "literacy", "naep", "census", "nces"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Scientific/Engineering :: Information Analysis",
]
dependencies = [
    "click>=8.0",
    "requests>=2.28",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
edu-stats = "edustats.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["edustats"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
