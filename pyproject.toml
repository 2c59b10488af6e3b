[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "docserve"
version = "0.1.0"
description = "A small TCP document server with pluggable caches, plus a load-generating client that checks what it receives"
requires-python = ">=3.10"
dependencies = []
keywords = ["document server", "cache", "lru", "load testing", "tcp", "benchmark"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
docserve-server = "docserve.server:main"
docserve-client = "docserve.client:main"

[tool.hatch.build.targets.wheel]
packages = ["docserve"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
