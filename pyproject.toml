[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nostrkv"
version = "0.1.0"
description = "Time-ordered key-value scanning over LMDB, with relay permission, authentication and rate-limit helpers"
requires-python = ">=3.10"
keywords = ["lmdb", "key-value", "scanner", "nostr", "rate-limit", "permission"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Database :: Database Engines/Servers",
    "Typing :: Typed",
]
dependencies = ["lmdb"]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nostrkv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
