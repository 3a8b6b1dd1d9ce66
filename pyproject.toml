[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ptpdaemon"
version = "0.1.0"
description = "Building blocks for managing linuxptp, SyncE and u-blox GNSS timing on Linux hosts"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "ptp",
    "ptp4l",
    "pmc",
    "linuxptp",
    "synce",
    "synce4l",
    "gnss",
    "ublox",
    "leap seconds",
    "time synchronization",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Time Synchronization",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ptpdaemon"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
