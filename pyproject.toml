[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "engram"
version = "0.1.0"
description = "Persistent codebase intelligence store: symbol graph, full-text and hybrid search, git ownership"
requires-python = ">=3.10"
dependencies = []
keywords = ["code-intelligence", "symbol-graph", "search", "sqlite", "fts5", "git"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Environment :: Console",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
engram = "engram.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["engram"]

[tool.pytest.ini_options]
addopts = "-ra"
