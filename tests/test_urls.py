import pytest

from repogit.urls import (
    ensure_prefix,
    is_commit_sha,
    is_http_url,
    is_https_url,
    is_ssh_url,
    is_truncated_commit_sha,
    normalize_git_url,
    remove_suffix,
    same_url,
)


def test_is_commit_sha():
    assert is_commit_sha("9d921f65f3c5373b682e2eb4b37afba6592e8f8b")
    assert is_commit_sha("9D921F65F3C5373B682E2EB4B37AFBA6592E8F8B")
    assert not is_commit_sha("gd921f65f3c5373b682e2eb4b37afba6592e8f8b")
    assert not is_commit_sha("master")
    assert not is_commit_sha("HEAD")
    assert not is_commit_sha("9d921f6")
    assert is_truncated_commit_sha("9d921f6")
    assert not is_truncated_commit_sha("9d921f")
    assert not is_truncated_commit_sha("branch-name")


@pytest.mark.parametrize(
    "value, prefix, expected",
    [
        ("world", "hello", "helloworld"),
        ("helloworld", "hello", "helloworld"),
        ("example.com", "https://", "https://example.com"),
        ("https://example.com", "https://", "https://example.com"),
        ("cd", "argo", "argocd"),
        ("argocd", "argo", "argocd"),
        ("", "argocd", "argocd"),
        ("argocd", "", "argocd"),
    ],
)
def test_ensure_prefix(value, prefix, expected):
    assert ensure_prefix(value, prefix) == expected


@pytest.mark.parametrize(
    "value, suffix, expected",
    [
        ("hello.git", ".git", "hello"),
        ("hello", ".git", "hello"),
        (".git", ".git", ""),
    ],
)
def test_remove_suffix(value, suffix, expected):
    assert remove_suffix(value, suffix) == expected


@pytest.mark.parametrize(
    "url, expected",
    [
        ("git://github.com/argoproj/test.git", False),
        ("git@example.com:argoproj/test.git", True),
        ("git@example.com:test", True),
        ("git@example.com:test.git", True),
        ("https://github.com/argoproj/test", False),
        ("https://github.com/argoproj/test.git", False),
        ("ssh://git@example.com:argoproj/test", True),
        ("ssh://git@example.com:argoproj/test.git", True),
        ("ssh://git@example.com:test.git", True),
    ],
)
def test_is_ssh_url(url, expected):
    assert is_ssh_url(url)[0] is expected


@pytest.mark.parametrize(
    "url, user",
    [
        ("ssh://john@john-server.example.com:29418/project", "john"),
        ("john@john-server.example.com:29418/project", "john"),
        ("john@example.com@john-server.example.com:29418/project", "john@example.com"),
        ("ssh://john@example.com@john-server.example.com:29418/project", "john@example.com"),
        ("john@example.com@john-server.example.com:project", "john@example.com"),
    ],
)
def test_is_ssh_url_user_name(url, user):
    assert is_ssh_url(url) == (True, user)


def test_is_ssh_url_no_match_returns_empty_user():
    assert is_ssh_url("https://github.com/argoproj/test") == (False, "")


@pytest.mark.parametrize(
    "left, right",
    [
        ("git@example.com:argoproj/test", "git@example.com:argoproj/test.git"),
        ("git@example.com:argoproj/test.git", "git@example.com:argoproj/test.git"),
        ("git@example.com:test", "git@example.com:test.git"),
        ("git@example.com:test.git", "git@example.com:test.git"),
        ("https://GITHUB.com/argoproj/test", "https://github.com/argoproj/test.git"),
        ("https://GITHUB.com/argoproj/test.git", "https://github.com/argoproj/test.git"),
        ("https://github.com/FOO", "https://github.com/foo"),
        ("https://github.com/TEST", "https://github.com/TEST.git"),
        ("https://github.com/TEST.git", "https://github.com/TEST.git"),
        ("https://github.com:4443/TEST", "https://github.com:4443/TEST.git"),
        ("https://github.com:4443/TEST.git", "https://github.com:4443/TEST"),
        ("ssh://git@example.com/argoproj/test", "git@example.com:argoproj/test.git"),
        ("ssh://git@example.com/argoproj/test.git", "git@example.com:argoproj/test.git"),
        ("ssh://git@example.com/test.git", "git@example.com:test.git"),
        ("ssh://git@example.com/test", "git@example.com:test.git"),
        (" https://github.com/argoproj/test ", "https://github.com/argoproj/test.git"),
        ("\thttps://github.com/argoproj/test\n", "https://github.com/argoproj/test.git"),
        (
            "https://1234.visualstudio.com/myproj/_git/myrepo",
            "https://1234.visualstudio.com/myproj/_git/myrepo",
        ),
        (
            "https://dev.azure.com/1234/myproj/_git/myrepo",
            "https://dev.azure.com/1234/myproj/_git/myrepo",
        ),
    ],
)
def test_same_url(left, right):
    assert same_url(left, right)


def test_same_url_different_repos():
    assert not same_url("https://github.com/argoproj/test", "https://github.com/argoproj/other")


def test_normalize_ssh_url():
    assert normalize_git_url("git@example.com:argoproj/test.git") == "git@example.com/argoproj/test"


def test_normalize_invalid_port_is_empty():
    assert normalize_git_url("https://github.com:abc/test") == ""
    assert not same_url("https://github.com:abc/test", "https://github.com:abc/test")


def test_https_and_http_detection():
    assert is_https_url("https://github.com/argoproj/test")
    assert not is_https_url("http://github.com/argoproj/test")
    assert is_http_url("http://github.com/argoproj/test")
    assert not is_http_url("https://github.com/argoproj/test")