[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "subproc"
version = "14.2.4"
description = "Start child processes, redirect their streams, poll them for events and stop them cleanly"
requires-python = ">=3.10"
dependencies = []
keywords = ["process", "subprocess", "pipe", "poll", "child process", "redirect", "deadline"]
classifiers = [
    "Development Status :: 5 - Production/Stable",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Topic :: System",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["subproc"]

[tool.pytest.ini_options]
addopts = "-ra"
