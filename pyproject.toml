[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "obsplat"
version = "0.1.0"
description = "A small observability backend: in-memory metric storage, a query language, alert rules and a Flask HTTP API."
requires-python = ">=3.10"
keywords = ["observability", "metrics", "monitoring", "alerting", "time series", "tracing", "logs"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: Flask",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml>=6.0",
    "flask>=2.3",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
]

[tool.hatch.build.targets.wheel]
packages = ["obsplat"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
