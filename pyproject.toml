[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "redwire"
version = "0.1.0"
description = "A small Redis client: reply reader, command encoder, blocking and non-blocking connections"
requires-python = ">=3.10"
dependencies = []
keywords = ["redis", "resp", "protocol", "client", "database"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
redwire-demo = "redwire.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["redwire"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
