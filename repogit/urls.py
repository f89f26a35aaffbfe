"""Helpers for recognising and normalising Git repository URLs."""

from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

_COMMIT_SHA_RE = re.compile(r"^[0-9A-Fa-f]{40}$")
_TRUNCATED_COMMIT_SHA_RE = re.compile(r"^[0-9A-Fa-f]{7,}$")
_SSH_URL_RE = re.compile(r"^(ssh://)?([^/:]*?)@[^@]+$")
_HTTPS_URL_RE = re.compile(r"^(https://).*")
_HTTP_URL_RE = re.compile(r"^(http://).*")
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")


def ensure_prefix(s: str, prefix: str) -> str:
    """Return ``s`` with ``prefix`` prepended unless it already starts with it."""
    return s if s.startswith(prefix) else prefix + s


def remove_suffix(s: str, suffix: str) -> str:
    """Return ``s`` without ``suffix`` if it ends with it."""
    if suffix and s.endswith(suffix):
        return s[: len(s) - len(suffix)]
    return s


def is_commit_sha(sha: str) -> bool:
    """Tell whether ``sha`` is a full 40 character SHA-1."""
    return _COMMIT_SHA_RE.match(sha) is not None


def is_truncated_commit_sha(sha: str) -> bool:
    """Tell whether ``sha`` looks like a hexadecimal SHA-1 of at least 7 characters."""
    return _TRUNCATED_COMMIT_SHA_RE.match(sha) is not None


def is_ssh_url(url: str) -> tuple[bool, str]:
    """Return whether ``url`` is an SSH URL, together with its user name."""
    match = _SSH_URL_RE.match(url)
    if match:
        return True, match.group(2)
    return False, ""


def is_https_url(url: str) -> bool:
    """Tell whether ``url`` uses the https scheme."""
    return _HTTPS_URL_RE.match(url) is not None


def is_http_url(url: str) -> bool:
    """Tell whether ``url`` uses the http scheme."""
    return _HTTP_URL_RE.match(url) is not None


def _parse_and_format(url: str) -> str:
    if _CONTROL_CHAR_RE.search(url) or _BAD_ESCAPE_RE.search(url):
        raise ValueError(f"invalid URL: {url!r}")
    if url.startswith(":"):
        raise ValueError(f"missing protocol scheme: {url!r}")
    parts = urlsplit(url)
    # Accessing the port validates it.
    _ = parts.port
    return urlunsplit(parts)


def normalize_git_url(repo: str) -> str:
    """Normalise a Git URL for comparison; return "" if it cannot be parsed.

    The algorithm is meant for comparisons only and may change over time.
    """
    repo = repo.strip().lower()
    ssh, _ = is_ssh_url(repo)
    if ssh and not repo.startswith("ssh://"):
        # git@server:path style: the first colon separates host and path.
        repo = ensure_prefix(repo.replace(":", "/", 1), "ssh://")
    repo = remove_suffix(repo, ".git")
    try:
        normalized = _parse_and_format(repo)
    except ValueError:
        return ""
    return normalized.removeprefix("ssh://")


def same_url(left_repo: str, right_repo: str) -> bool:
    """Tell whether two repository URLs point to the same location."""
    left = normalize_git_url(left_repo)
    right = normalize_git_url(right_repo)
    return left != "" and right != "" and left == right