[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "brokerhub"
version = "0.1.0"
description = "Pluggable providers for a publish/subscribe message broker: logging, usage metering, no-op storage and monitoring sinks."
requires-python = ">=3.10"
keywords = ["broker", "pubsub", "metering", "hyperloglog", "monitoring", "statsd", "prometheus"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications",
    "Topic :: System :: Monitoring",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["brokerhub"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
