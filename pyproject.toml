[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "unionfskit"
version = "0.1.0"
description = "Path-level union, caching and archive file systems, with splice-based file copying"
requires-python = ">=3.10"
dependencies = []
keywords = ["unionfs", "overlay", "filesystem", "zip", "tar", "splice", "cache"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["unionfskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
