[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ocppcharge"
version = "0.1.0"
description = "Charge point building blocks for OCPP 1.6: smart charging, metering, transaction records and heartbeat"
requires-python = ">=3.10"
keywords = ["ocpp", "ev-charging", "charge-point", "smart-charging", "metering"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ocppcharge"]

[tool.pytest.ini_options]
addopts = "-ra"
