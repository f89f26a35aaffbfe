"""A Git client that drives the git command line tool."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional, Protocol, Sequence
from urllib.parse import urlsplit

from .creds import NopCreds
from .transport import (
    Reference,
    RefType,
    cert_bundle_path_for_repository,
    list_remote,
)
from .urls import is_commit_sha, is_https_url, is_truncated_commit_sha, normalize_git_url

log = logging.getLogger(__name__)

ENV_GIT_ATTEMPTS_COUNT = "ARGOCD_GIT_ATTEMPTS_COUNT"
ENV_GIT_SUBMODULE_ENABLED = "ARGOCD_GIT_MODULES_ENABLED"
ENV_GNUPG_HOME = "ARGOCD_GNUPGHOME"
DEFAULT_GNUPG_HOME = "/app/config/gpg/keys"
DEFAULT_REMOTE_NAME = "origin"
DEFAULT_COMMIT_MESSAGE = "Update parameters"
VERIFY_WRAPPER = "git-verify-wrapper.sh"

_COMMAND_TIMEOUT = 90.0
_PROXY_ENV_NAMES = ("http_proxy", "https_proxy", "HTTP_PROXY", "HTTPS_PROXY")
_URL_SEPARATORS_RE = re.compile(r"[/:]")


class GitError(Exception):
    """A git operation failed."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class Creds(Protocol):
    def environ(self) -> tuple[Any, dict[str, str]]: ...


class GitRefCache(Protocol):
    """Stores the references of remote repositories."""

    def get_git_references(self, repo: str) -> Optional[Sequence[Reference]]: ...

    def set_git_references(self, repo: str, references: Sequence[Reference]) -> None: ...


@dataclass(frozen=True)
class RevisionMetadata:
    """Author, date, tags and message of a commit."""

    author: str
    date: datetime
    tags: list[str]
    message: str


@dataclass
class Refs:
    """Branch and tag names of a remote repository."""

    branches: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


Hook = Callable[[str], Callable[[], None]]


@dataclass(frozen=True)
class EventHandlers:
    """Callbacks run around remote operations; each returns a completion callback."""

    on_ls_remote: Optional[Hook] = None
    on_fetch: Optional[Hook] = None


@dataclass(frozen=True)
class CommitOptions:
    """Options for a git commit."""

    commit_message_text: str = ""
    commit_message_path: str = ""
    signing_key: str = ""
    sign_off: bool = False


def max_attempts_count() -> int:
    """Number of attempts for resolving remote revisions, at least 1."""
    raw = os.environ.get(ENV_GIT_ATTEMPTS_COUNT, "")
    if not raw:
        return 1
    try:
        count = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value in {ENV_GIT_ATTEMPTS_COUNT} env variable: {exc}") from exc
    return max(count, 1)


def _gnupg_home() -> str:
    return os.environ.get(ENV_GNUPG_HOME) or DEFAULT_GNUPG_HOME


class NativeGitClient:
    """Git client working on a local clone through the git command line tool."""

    def __init__(
        self,
        repo_url: str,
        root: str,
        creds: Optional[Creds] = None,
        insecure: bool = False,
        enable_lfs: bool = False,
        proxy: str = "",
        ref_cache: Optional[GitRefCache] = None,
        load_ref_from_cache: bool = False,
        event_handlers: Optional[EventHandlers] = None,
    ) -> None:
        self._repo_url = repo_url
        self._root = root
        self._creds = creds if creds is not None else NopCreds()
        self._insecure = insecure
        self._enable_lfs = enable_lfs
        self._proxy = proxy
        self._ref_cache = ref_cache
        self._load_ref_from_cache = load_ref_from_cache
        self._event_handlers = event_handlers or EventHandlers()

    def root(self) -> str:
        """Path of the local working copy."""
        return self._root

    def init(self) -> None:
        """Create the local repository with the remote origin unless it exists."""
        if os.path.isdir(os.path.join(self._root, ".git")):
            return
        log.info("Initializing %s to %s", self._repo_url, self._root)
        try:
            if os.path.lexists(self._root):
                shutil.rmtree(self._root)
        except OSError as exc:
            raise GitError(f"unable to clean repo at {self._root}: {exc}") from exc
        os.makedirs(self._root, mode=0o755, exist_ok=True)
        self._run("init", "-q")
        self._run("remote", "add", DEFAULT_REMOTE_NAME, self._repo_url)

    def is_lfs_enabled(self) -> bool:
        return self._enable_lfs

    def fetch(self, revision: str = "") -> None:
        """Fetch the latest updates from origin, with large files when LFS is on."""
        with self._event(self._event_handlers.on_fetch):
            if revision:
                self._run_credentialed("fetch", "origin", revision, "--tags", "--force")
            else:
                self._run_credentialed("fetch", "origin", "--tags", "--force")
            if self.is_lfs_enabled():
                try:
                    large_files = self.ls_large_files()
                except GitError:
                    return
                if large_files:
                    self._run_credentialed("lfs", "fetch", "--all")

    def ls_files(self, path: str) -> list[str]:
        """Files under source control below ``path``."""
        out = self._run("ls-files", "--full-name", "-z", "--", path)
        return out.split("\0")[:-1]

    def ls_large_files(self) -> list[str]:
        """Files that refer to LFS storage."""
        out = self._run("lfs", "ls-files", "-n")
        return [line for line in out.split("\n") if line]

    def checkout(self, revision: str = "") -> None:
        """Check out ``revision`` and bring the working tree into a clean state."""
        if revision in ("", "HEAD"):
            revision = "origin/HEAD"
        self._run("checkout", "--force", revision)
        if self.is_lfs_enabled() and self.ls_large_files():
            self._run("lfs", "checkout")
        if os.path.exists(os.path.join(self._root, ".gitmodules")):
            if os.environ.get(ENV_GIT_SUBMODULE_ENABLED) != "false":
                self._run_credentialed("submodule", "update", "--init", "--recursive")
        self._run("clean", "-fdx")

    def ls_refs(self) -> Refs:
        """Sorted branch and tag names of the remote."""
        refs = Refs()
        for ref in self._get_refs():
            if ref.is_branch():
                refs.branches.append(ref.short_name())
            elif ref.is_tag():
                refs.tags.append(ref.short_name())
        log.debug(
            "LsRefs resolved %d branches and %d tags on repository",
            len(refs.branches),
            len(refs.tags),
        )
        refs.branches.sort()
        refs.tags.sort()
        return refs

    def ls_remote(self, revision: str = "") -> str:
        """Resolve a branch, tag or HEAD of the remote to a commit SHA.

        A revision that looks like a (truncated) commit SHA is returned as is.
        """
        last_error: Optional[GitError] = None
        for _ in range(max_attempts_count()):
            try:
                return self._ls_remote(revision)
            except GitError as exc:
                last_error = exc
        assert last_error is not None
        raise last_error

    def commit_sha(self) -> str:
        """SHA of the commit currently checked out."""
        return self._run("rev-parse", "HEAD").strip()

    def revision_metadata(self, revision: str) -> RevisionMetadata:
        """Author, date, tags and message of ``revision``."""
        out = self._run("show", "-s", "--format=%an <%ae>|%at|%B", revision)
        segments = out.split("|", 2)
        if len(segments) != 3:
            raise GitError(f"expected 3 segments, got {segments}")
        author, timestamp, message = segments
        try:
            seconds = int(timestamp)
        except ValueError:
            seconds = 0
        tags = self._run("tag", "--points-at", revision).split()
        return RevisionMetadata(
            author=author,
            date=datetime.fromtimestamp(seconds, timezone.utc),
            tags=tags,
            message=message.strip(),
        )

    def verify_commit_signature(self, revision: str) -> str:
        """Output of the signature verification of ``revision``."""
        env = {"GNUPGHOME": _gnupg_home(), "LANG": "C"}
        return self._run_program(VERIFY_WRAPPER, [revision], env)

    def commit(self, path_spec: str = "", opts: Optional[CommitOptions] = None) -> None:
        """Commit pending changes; an empty or "*" path spec commits everything."""
        opts = opts or CommitOptions()
        args = ["commit"]
        if path_spec in ("", "*"):
            args.append("-a")
        if opts.signing_key:
            args += ["-S", opts.signing_key]
        if opts.sign_off:
            args.append("-s")
        if opts.commit_message_text:
            args += ["-m", opts.commit_message_text]
        elif opts.commit_message_path:
            args += ["-F", opts.commit_message_path]
        else:
            args += ["-m", DEFAULT_COMMIT_MESSAGE]
        try:
            self._run(*args)
        except GitError as exc:
            log.error("%s", exc.output)
            raise

    def branch(self, source_branch: str, target_branch: str) -> None:
        """Create ``target_branch`` from ``source_branch`` (or from HEAD)."""
        if source_branch:
            try:
                self._run("checkout", source_branch)
            except GitError as exc:
                raise GitError(f"could not checkout source branch: {exc}") from exc
        try:
            self._run("branch", target_branch)
        except GitError as exc:
            raise GitError(f"could not create new branch: {exc}") from exc

    def push(self, remote: str, branch: str, force: bool = False) -> None:
        """Push ``branch`` to ``remote``, forcing it if asked to."""
        args = ["push"]
        if force:
            args.append("-f")
        args += [remote, branch]
        try:
            self._run_credentialed(*args)
        except GitError as exc:
            raise GitError(f"could not push {branch} to {remote}: {exc}") from exc

    def add(self, path: str) -> None:
        """Stage ``path``."""
        self._run_credentialed("add", path)

    def sym_ref_to_branch(self, sym_ref: str) -> str:
        """Name of the branch a symbolic reference points to."""
        try:
            output = self._run("symbolic-ref", sym_ref)
        except GitError as exc:
            raise GitError(f"could not resolve symbolic ref '{sym_ref}': {exc}") from exc
        parts = output.split("refs/heads/", 1)
        if len(parts) == 2:
            return parts[1]
        raise GitError(f"no symbolic ref named '{sym_ref}' could be found")

    def config(self, username: str, email: str) -> None:
        """Set the committer name and e-mail address of the repository."""
        try:
            self._run("config", "user.name", username)
        except GitError as exc:
            raise GitError(f"could not set git username: {exc}") from exc
        try:
            self._run("config", "user.email", email)
        except GitError as exc:
            raise GitError(f"could not set git email: {exc}") from exc

    def _ls_remote(self, revision: str) -> str:
        if is_commit_sha(revision):
            return revision
        refs = self._get_refs()
        if not revision:
            revision = "HEAD"
        ref_to_hash: dict[str, str] = {}
        ref_to_resolve = ""
        for ref in refs:
            if ref.type is RefType.HASH:
                ref_to_hash[ref.name] = ref.sha
            if ref.short_name() == revision or ref.name == revision:
                if ref.type is RefType.HASH:
                    log.debug("revision '%s' resolved to '%s'", revision, ref.sha)
                    return ref.sha
                if ref.type is RefType.SYMBOLIC:
                    ref_to_resolve = ref.target
        if ref_to_resolve and ref_to_resolve in ref_to_hash:
            sha = ref_to_hash[ref_to_resolve]
            log.debug(
                "symbolic reference '%s' (%s) resolved to '%s'", revision, ref_to_resolve, sha
            )
            return sha
        if is_truncated_commit_sha(revision):
            log.debug("revision '%s' assumed to be commit sha", revision)
            return revision
        raise GitError(f"Unable to resolve '{revision}' to a commit SHA")

    def _get_refs(self) -> list[Reference]:
        if self._ref_cache is not None and self._load_ref_from_cache:
            cached = self._ref_cache.get_git_references(self._repo_url)
            if cached is not None:
                return list(cached)
        with self._event(self._event_handlers.on_ls_remote):
            closer, creds_env = self._creds.environ()
            try:
                refs = list_remote(self._repo_url, self._command_env(creds_env))
            except subprocess.CalledProcessError as exc:
                raise GitError(
                    f"could not list references of {self._repo_url}: {(exc.stderr or '').strip()}"
                ) from exc
            except (OSError, ValueError) as exc:
                raise GitError(f"could not list references of {self._repo_url}: {exc}") from exc
            finally:
                with contextlib.suppress(OSError):
                    closer.close()
        if self._ref_cache is not None:
            try:
                self._ref_cache.set_git_references(self._repo_url, refs)
            except Exception as exc:  # a failing cache must not fail the lookup
                log.warning("Failed to store git references to cache: %s", exc)
        return refs

    @contextlib.contextmanager
    def _event(self, hook: Optional[Hook]) -> Iterator[None]:
        if hook is None:
            yield
            return
        done = hook(self._repo_url)
        try:
            yield
        finally:
            done()

    def _command_env(self, extra: Mapping[str, str]) -> dict[str, str]:
        env = dict(os.environ)
        env.update(extra)
        # Keep git away from any keys or config of the invoking user.
        env["HOME"] = "/dev/null"
        env["GIT_LFS_SKIP_SMUDGE"] = "1"
        if is_https_url(self._repo_url):
            if self._insecure:
                env["GIT_SSL_NO_VERIFY"] = "true"
            else:
                try:
                    host = urlsplit(self._repo_url).netloc
                except ValueError:
                    log.warning("Could not parse repo URL '%s'", self._repo_url)
                else:
                    try:
                        ca_path = cert_bundle_path_for_repository(host)
                    except (ValueError, OSError):
                        ca_path = ""
                    if ca_path:
                        env["GIT_SSL_CAINFO"] = ca_path
        if self._proxy:
            for name in _PROXY_ENV_NAMES:
                env.pop(name, None)
            env["http_proxy"] = self._proxy
            env["https_proxy"] = self._proxy
        return env

    def _run_program(
        self, program: str, args: Sequence[str], extra_env: Optional[Mapping[str, str]] = None
    ) -> str:
        command = [program, *args]
        shown = " ".join(command)
        try:
            result = subprocess.run(
                command,
                cwd=self._root,
                env=self._command_env(extra_env or {}),
                capture_output=True,
                text=True,
                timeout=_COMMAND_TIMEOUT,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitError(f"`{shown}` timed out after {_COMMAND_TIMEOUT}s") from exc
        except OSError as exc:
            raise GitError(f"`{shown}` failed: {exc}") from exc
        if result.returncode != 0:
            raise GitError(
                f"`{shown}` failed exit status {result.returncode}: {result.stderr.strip()}",
                output=result.stdout,
            )
        return result.stdout.removesuffix("\n")

    def _run(self, *args: str) -> str:
        return self._run_program("git", args)

    def _run_credentialed(self, *args: str) -> None:
        closer, creds_env = self._creds.environ()
        try:
            self._run_program("git", args, creds_env)
        finally:
            with contextlib.suppress(OSError):
                closer.close()


def new_client_ext(
    raw_repo_url: str,
    root: str,
    creds: Optional[Creds] = None,
    insecure: bool = False,
    enable_lfs: bool = False,
    proxy: str = "",
    ref_cache: Optional[GitRefCache] = None,
    load_ref_from_cache: bool = False,
    event_handlers: Optional[EventHandlers] = None,
) -> NativeGitClient:
    """Client for ``raw_repo_url`` working in ``root``."""
    return NativeGitClient(
        raw_repo_url,
        root,
        creds,
        insecure,
        enable_lfs,
        proxy,
        ref_cache,
        load_ref_from_cache,
        event_handlers,
    )


def new_client(
    raw_repo_url: str,
    creds: Optional[Creds] = None,
    insecure: bool = False,
    enable_lfs: bool = False,
    proxy: str = "",
    ref_cache: Optional[GitRefCache] = None,
    load_ref_from_cache: bool = False,
    event_handlers: Optional[EventHandlers] = None,
) -> NativeGitClient:
    """Client for ``raw_repo_url`` working in a directory below the system temp dir."""
    temp_dir = tempfile.gettempdir()
    name = _URL_SEPARATORS_RE.sub("_", normalize_git_url(raw_repo_url))
    root = os.path.join(temp_dir, name)
    if os.path.normpath(root) == os.path.normpath(temp_dir):
        raise ValueError(
            f"Repository '{raw_repo_url}' cannot be initialized, because its root "
            f"would be system temp at {root}"
        )
    return new_client_ext(
        raw_repo_url,
        root,
        creds,
        insecure,
        enable_lfs,
        proxy,
        ref_cache,
        load_ref_from_cache,
        event_handlers,
    )


def verify_repo_access(
    repo: str,
    creds: Optional[Creds] = None,
    insecure: bool = False,
    enable_lfs: bool = False,
    proxy: str = "",
) -> str:
    """Check that ``repo`` is reachable; return the SHA its HEAD resolves to."""
    return new_client(repo, creds, insecure, enable_lfs, proxy).ls_remote("HEAD")