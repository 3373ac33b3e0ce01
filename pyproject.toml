[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sstkit"
version = "0.1.0"
description = "Sorted string table files: block building, filter blocks, write batches and merging iterators"
requires-python = ">=3.10"
dependencies = []
keywords = ["sstable", "lsm", "key-value", "storage", "crc32c", "iterator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["sstkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"
