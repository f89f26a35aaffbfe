[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "repogit"
version = "0.1.0"
description = "A Git repository client driving the git command line, with HTTPS, SSH and GitHub App credentials"
requires-python = ">=3.10"
keywords = ["git", "repository", "credentials", "ls-remote", "ssh", "https", "github-app"]
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
    "Topic :: Software Development :: Version Control :: Git",
    "Typing :: Typed",
]
dependencies = [
    "pyjwt",
    "cryptography",
    "requests",
    "cachetools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["repogit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
