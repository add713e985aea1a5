[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "echodesk"
version = "0.1.0"
description = "SQLite-backed store for coding agents, their tasks, terminal sessions, alerts and runtime issues, with configuration loading and issue text cleanup."
requires-python = ">=3.11"
keywords = ["agents", "sqlite", "sessions", "alerts", "runtime-issues"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
    "Topic :: Database",
]
dependencies = [
    "httpx>=0.25",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "respx>=0.20",
]

[tool.hatch.build.targets.wheel]
packages = ["echodesk"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
