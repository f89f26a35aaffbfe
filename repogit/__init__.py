"""Git repository client built on the git command line, with URL helpers and credentials."""

__version__ = "0.1.0"