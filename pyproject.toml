[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftkv"
version = "0.1.0"
description = "An in-process Raft cluster with a replicated key-value store and an interactive shell"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "key-value", "distributed", "replication"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
raftkv = "raftkv.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["raftkv"]

[tool.pytest.ini_options]
addopts = "-ra"
