[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xtzdelegations"
version = "1.0.0"
description = "Collects Tezos delegation operations into a SQL database and serves them over a paginated HTTP API."
requires-python = ">=3.10"
keywords = ["tezos", "delegation", "tzkt", "flask", "postgresql", "poller"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Database",
]
dependencies = [
    "flask",
    "httpx",
    "sqlalchemy",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
xtzdelegations = "xtzdelegations.main:main"

[tool.hatch.build.targets.wheel]
packages = ["xtzdelegations"]

[tool.hatch.build.targets.sdist]
include = [
    "xtzdelegations",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
