import os
import re
import subprocess
import tempfile

import pytest

from repogit.client import (
    CommitOptions,
    EventHandlers,
    GitError,
    Refs,
    max_attempts_count,
    new_client,
    new_client_ext,
    verify_repo_access,
)
from repogit.creds import NopCreds
from repogit.transport import Reference, RefType
from repogit.urls import is_commit_sha, is_truncated_commit_sha

FULL_SHA = "4e22a3cb21fa447ca362a05a505a69397c8a0d44"
MASTER_SHA = "1111111111111111111111111111111111111111"
RELEASE_SHA = "2222222222222222222222222222222222222222"
TAG_SHA = "3333333333333333333333333333333333333333"
REPO_URL = "https://github.com/argoproj/argo-cd.git"

CACHED_REFS = [
    Reference(name="HEAD", target="refs/heads/master", type=RefType.SYMBOLIC),
    Reference(name="refs/heads/master", sha=MASTER_SHA),
    Reference(name="refs/heads/release-0.8", sha=RELEASE_SHA),
    Reference(name="refs/tags/v0.8.0", sha=TAG_SHA),
]


class DictCache:
    def __init__(self, initial=None):
        self.store = dict(initial or {})

    def get_git_references(self, repo):
        return self.store.get(repo)

    def set_git_references(self, repo, references):
        self.store[repo] = list(references)


def _git(cwd, *args):
    env = {**os.environ, "HOME": str(cwd), "GIT_CONFIG_NOSYSTEM": "1"}
    result = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test User",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        env=env,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def origin(tmp_path):
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "README.md").write_text("hello\n")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-q", "-m", "Initial commit")
    _git(repo, "tag", "v1.0.0")
    return repo


def _cached_client(handlers=None):
    cache = DictCache({REPO_URL: CACHED_REFS})
    return new_client_ext(
        REPO_URL,
        "/tmp",
        NopCreds(),
        False,
        False,
        "",
        ref_cache=cache,
        load_ref_from_cache=True,
        event_handlers=handlers,
    )


@pytest.mark.parametrize(
    "revision, expected",
    [
        ("HEAD", MASTER_SHA),
        ("", MASTER_SHA),
        ("master", MASTER_SHA),
        ("refs/heads/master", MASTER_SHA),
        ("release-0.8", RELEASE_SHA),
        ("v0.8.0", TAG_SHA),
        (FULL_SHA, FULL_SHA),
    ],
)
def test_ls_remote_resolves_from_cache(revision, expected):
    sha = _cached_client().ls_remote(revision)
    assert sha == expected
    assert is_commit_sha(sha)


def test_ls_remote_returns_truncated_sha_as_is():
    sha = _cached_client().ls_remote("4e22a3c")
    assert sha == "4e22a3c"
    assert not is_commit_sha(sha)
    assert is_truncated_commit_sha(sha)


@pytest.mark.parametrize("revision", ["unresolvable", "4e22a3"])
def test_ls_remote_unresolvable(revision):
    with pytest.raises(GitError, match="Unable to resolve"):
        _cached_client().ls_remote(revision)


def test_ls_refs_from_cache_sorted():
    refs = _cached_client().ls_refs()
    assert refs == Refs(branches=["master", "release-0.8"], tags=["v0.8.0"])
    assert "v0.8.0" not in refs.branches
    assert "master" not in refs.tags


def test_cache_hit_skips_ls_remote_handler():
    calls = []
    handlers = EventHandlers(on_ls_remote=lambda repo: calls.append(repo) or (lambda: None))
    assert _cached_client(handlers).ls_remote("HEAD") == MASTER_SHA
    assert calls == []


def test_remote_refs_are_stored_in_cache(origin, tmp_path):
    cache = DictCache()
    client = new_client_ext(str(origin), str(tmp_path / "work"), NopCreds(), ref_cache=cache)
    head = _git(origin, "rev-parse", "HEAD")
    assert client.ls_remote("HEAD") == head
    names = {ref.name for ref in cache.store[str(origin)]}
    assert {"HEAD", "refs/heads/main", "refs/tags/v1.0.0"} <= names


def test_ls_remote_retries_attempts(tmp_path, monkeypatch):
    monkeypatch.setenv("ARGOCD_GIT_ATTEMPTS_COUNT", "3")
    started, finished = [], []

    def on_ls_remote(repo):
        started.append(repo)
        return lambda: finished.append(repo)

    missing = str(tmp_path / "missing")
    client = new_client_ext(
        missing, str(tmp_path), NopCreds(), event_handlers=EventHandlers(on_ls_remote=on_ls_remote)
    )
    with pytest.raises(GitError):
        client.ls_remote("HEAD")
    assert started == [missing] * 3
    assert finished == [missing] * 3


@pytest.mark.parametrize("value, expected", [("3", 3), ("0", 1), ("-2", 1), ("", 1)])
def test_max_attempts_count(monkeypatch, value, expected):
    monkeypatch.setenv("ARGOCD_GIT_ATTEMPTS_COUNT", value)
    assert max_attempts_count() == expected


def test_max_attempts_count_invalid(monkeypatch):
    monkeypatch.setenv("ARGOCD_GIT_ATTEMPTS_COUNT", "many")
    with pytest.raises(ValueError, match="ARGOCD_GIT_ATTEMPTS_COUNT"):
        max_attempts_count()


def test_new_client_root_in_temp_dir():
    client = new_client(REPO_URL, NopCreds(), False, False, "")
    expected = os.path.join(tempfile.gettempdir(), "https___github.com_argoproj_argo-cd")
    assert client.root() == expected


def test_new_client_rejects_temp_dir_root():
    with pytest.raises(ValueError, match="system temp"):
        new_client("%zz", NopCreds(), False, False, "")


def test_is_lfs_enabled():
    assert new_client_ext(REPO_URL, "/tmp", enable_lfs=True).is_lfs_enabled() is True
    assert new_client_ext(REPO_URL, "/tmp").is_lfs_enabled() is False


def test_verify_repo_access(origin):
    head = _git(origin, "rev-parse", "HEAD")
    assert verify_repo_access(str(origin), NopCreds(), False, False, "") == head


def test_command_failure_raises(tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    client = new_client_ext(REPO_URL, str(empty))
    with pytest.raises(GitError, match="rev-parse"):
        client.commit_sha()


def test_init_is_idempotent(origin, tmp_path):
    work = tmp_path / "work"
    client = new_client_ext(str(origin), str(work), NopCreds())
    client.init()
    marker = work / "marker.txt"
    marker.write_text("keep")
    client.init()
    assert marker.read_text() == "keep"
    remote = _git(work, "remote", "get-url", "origin")
    assert remote == str(origin)


def test_fetch_checkout_and_metadata(origin, tmp_path):
    head = _git(origin, "rev-parse", "HEAD")
    fetched, done = [], []

    def on_fetch(repo):
        fetched.append(repo)
        return lambda: done.append(repo)

    client = new_client_ext(
        str(origin), str(tmp_path / "work"), NopCreds(), event_handlers=EventHandlers(on_fetch=on_fetch)
    )
    client.init()
    client.fetch("")
    client.fetch("")
    assert fetched == [str(origin)] * 2
    assert done == [str(origin)] * 2

    assert client.ls_remote("HEAD") == head
    client.checkout(head)
    assert client.commit_sha() == head

    meta = client.revision_metadata(head)
    assert re.match(r"^.*<.*>$", meta.author)
    assert meta.author == "Test User <test@example.com>"
    assert meta.tags == ["v1.0.0"]
    assert meta.message == "Initial commit"
    assert meta.date.year >= 2000
    assert client.ls_files(".") == ["README.md"]


def test_detached_head_is_not_a_branch(origin, tmp_path):
    head = _git(origin, "rev-parse", "HEAD")
    client = new_client_ext(str(origin), str(tmp_path / "work"), NopCreds())
    client.init()
    client.fetch("")
    client.checkout(head)
    with pytest.raises(GitError, match="could not resolve symbolic ref 'HEAD'"):
        client.sym_ref_to_branch("HEAD")


def test_branch_commit_and_push(origin, tmp_path):
    head = _git(origin, "rev-parse", "HEAD")
    work = tmp_path / "work"
    client = new_client_ext(str(origin), str(work), NopCreds())
    client.init()
    client.fetch("")
    client.checkout(head)
    client.config("Updater", "updater@example.com")

    client.branch("", "feature")
    client.checkout("feature")
    assert client.sym_ref_to_branch("HEAD") == "feature"

    (work / "values.yaml").write_text("image: nginx:1.2.3\n")
    client.add("values.yaml")
    client.commit("", CommitOptions(commit_message_text="Update values"))
    new_sha = client.commit_sha()
    assert new_sha != head

    meta = client.revision_metadata(new_sha)
    assert meta.message == "Update values"
    assert meta.author == "Updater <updater@example.com>"
    assert meta.tags == []

    client.push("origin", "feature", False)
    assert _git(origin, "rev-parse", "refs/heads/feature") == new_sha
    assert client.ls_refs() == Refs(branches=["feature", "main"], tags=["v1.0.0"])


def test_commit_default_message(origin, tmp_path):
    head = _git(origin, "rev-parse", "HEAD")
    work = tmp_path / "work"
    client = new_client_ext(str(origin), str(work), NopCreds())
    client.init()
    client.fetch("")
    client.checkout(head)
    client.config("Updater", "updater@example.com")
    (work / "README.md").write_text("changed\n")
    client.commit("*")
    assert client.revision_metadata(client.commit_sha()).message == "Update parameters"


def test_branch_from_missing_source_fails(origin, tmp_path):
    client = new_client_ext(str(origin), str(tmp_path / "work"), NopCreds())
    client.init()
    client.fetch("")
    with pytest.raises(GitError, match="could not checkout source branch"):
        client.branch("no-such-branch", "feature")


def test_push_to_missing_branch_fails(origin, tmp_path):
    head = _git(origin, "rev-parse", "HEAD")
    client = new_client_ext(str(origin), str(tmp_path / "work"), NopCreds())
    client.init()
    client.fetch("")
    client.checkout(head)
    with pytest.raises(GitError, match="could not push nothing-here to origin"):
        client.push("origin", "nothing-here", True)