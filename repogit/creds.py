"""Credentials that prepare the environment for running git against a remote."""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Union

import jwt
import requests
from cachetools import TTLCache
from cryptography.hazmat.primitives import serialization

from .transport import RepoHTTPClient, get_repo_http_client, ssh_known_hosts_data_path

log = logging.getLogger(__name__)

ASKPASS_SCRIPT = "git-ask-pass.sh"
GITHUB_APP_USERNAME = "x-access-token"
DEFAULT_GITHUB_API_URL = "https://api.github.com"

_TOKEN_CACHE_TTL = 60 * 60
_TOKEN_REFRESH_MARGIN = timedelta(minutes=1)
_REQUEST_TIMEOUT = 15.0

_token_cache: TTLCache = TTLCache(maxsize=1024, ttl=_TOKEN_CACHE_TTL)
_token_cache_lock = threading.Lock()


def _secure_temp_dir() -> str:
    """Prefer shared memory for secrets so they never reach a disk."""
    shm = "/dev/shm"
    if os.path.isdir(shm) and os.access(shm, os.W_OK):
        return shm
    return tempfile.gettempdir()


def _write_temp_file(data: str) -> str:
    fd, path = tempfile.mkstemp(dir=_secure_temp_dir())
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(path)
        raise
    return path


class _Closer:
    """Base for objects releasing resources created for a git invocation."""

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "_Closer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class NopCloser(_Closer):
    """A closer that has nothing to release."""

    def close(self) -> None:
        return None


@dataclass(frozen=True)
class AuthFilePaths(_Closer):
    """Temporary files holding authentication data, removed on close."""

    paths: tuple[str, ...] = ()

    def close(self) -> None:
        """Remove every file; raise the last error after trying them all."""
        last_error: Optional[OSError] = None
        for path in self.paths:
            try:
                os.remove(path)
            except OSError as exc:
                log.error("Could not remove temp file %s: %s", path, exc)
                last_error = exc
        if last_error is not None:
            raise last_error


@dataclass(frozen=True)
class SSHPrivateKeyFile(_Closer):
    """A temporary file holding an SSH private key, removed on close."""

    path: str

    def close(self) -> None:
        os.remove(self.path)


Closer = Union[NopCloser, AuthFilePaths, SSHPrivateKeyFile]


class NopCreds:
    """Credentials that add nothing to the environment."""

    def environ(self) -> tuple[Closer, dict[str, str]]:
        return NopCloser(), {}


def _client_cert_environ(cert_data: str, key_data: str) -> tuple[AuthFilePaths, dict[str, str]]:
    """Write client certificate and key to temp files and name them for git."""
    temp_dir = _secure_temp_dir()
    cert_fd, cert_path = tempfile.mkstemp(dir=temp_dir)
    try:
        key_fd, key_path = tempfile.mkstemp(dir=temp_dir)
    except OSError:
        os.close(cert_fd)
        try:
            os.remove(cert_path)
        except OSError as exc:
            log.error("Could not remove previously created tempfile %s: %s", cert_path, exc)
        raise
    closer = AuthFilePaths((cert_path, key_path))
    try:
        with os.fdopen(cert_fd, "w", encoding="utf-8") as cert_fh, os.fdopen(
            key_fd, "w", encoding="utf-8"
        ) as key_fh:
            cert_fh.write(cert_data)
            key_fh.write(key_data)
    except OSError:
        with contextlib.suppress(OSError):
            closer.close()
        raise
    return closer, {"GIT_SSL_CERT": cert_path, "GIT_SSL_KEY": key_path}


def _askpass_environ(
    username: str, secret: str, insecure: bool, cert_data: str, key_data: str
) -> tuple[Closer, dict[str, str]]:
    env = {
        "GIT_ASKPASS": ASKPASS_SCRIPT,
        "GIT_USERNAME": username,
        "GIT_PASSWORD": secret,
    }
    if insecure:
        env["GIT_SSL_NO_VERIFY"] = "true"
    if cert_data and key_data:
        closer, cert_env = _client_cert_environ(cert_data, key_data)
        env.update(cert_env)
        return closer, env
    return AuthFilePaths(), env


@dataclass(frozen=True)
class HTTPSCreds:
    """Username and password credentials, optionally with a TLS client certificate."""

    username: str
    password: str
    client_cert_data: str = ""
    client_cert_key: str = ""
    insecure: bool = False
    proxy: str = ""

    def environ(self) -> tuple[Closer, dict[str, str]]:
        """Environment for git; the closer removes any temporary files."""
        return _askpass_environ(
            self.username,
            self.password,
            self.insecure,
            self.client_cert_data,
            self.client_cert_key,
        )

    def has_client_cert(self) -> bool:
        return self.client_cert_data != "" and self.client_cert_key != ""


@dataclass(frozen=True)
class SSHCreds:
    """SSH private key credentials."""

    ssh_private_key: str
    ca_path: str = ""
    insecure: bool = False

    def environ(self) -> tuple[Closer, dict[str, str]]:
        """Environment for git; the closer removes the private key file."""
        key_path = _write_temp_file(self.ssh_private_key + "\n")
        args = ["ssh", "-i", key_path]
        env: dict[str, str] = {}
        if self.ca_path:
            env["GIT_SSL_CAINFO"] = self.ca_path
        if self.insecure:
            log.warning(
                "temporarily disabling strict host key checking (i.e. '-o "
                "StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null'), "
                "please don't use in production"
            )
            args += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        else:
            args += [
                "-o",
                "StrictHostKeyChecking=yes",
                "-o",
                f"UserKnownHostsFile={ssh_known_hosts_data_path()}",
            ]
        env["GIT_SSH_COMMAND"] = " ".join(args)
        return SSHPrivateKeyFile(key_path), env


def _parse_expiry(value: object) -> datetime:
    if not isinstance(value, str) or not value:
        return datetime.now(timezone.utc)
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextlib.contextmanager
def _tls_request_options(http: RepoHTTPClient) -> Iterator[dict]:
    """Keyword arguments for requests reflecting the TLS settings of ``http``."""
    created: list[str] = []
    try:
        options: dict = {}
        if http.insecure:
            options["verify"] = False
        elif http.ca_certificates:
            path = _write_temp_file("\n".join(http.ca_certificates) + "\n")
            created.append(path)
            options["verify"] = path
        if http.client_cert is not None:
            cert_path = _write_temp_file(http.client_cert[0])
            created.append(cert_path)
            key_path = _write_temp_file(http.client_cert[1])
            created.append(key_path)
            options["cert"] = (cert_path, key_path)
        yield options
    finally:
        for path in created:
            with contextlib.suppress(OSError):
                os.remove(path)


@dataclass
class _InstallationTokenSource:
    """Fetches and refreshes installation tokens of a GitHub App."""

    app_id: int
    install_id: int
    signing_key: object
    base_url: str
    http: RepoHTTPClient
    _token: Optional[str] = None
    _expires_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def token(self) -> str:
        with self._lock:
            now = datetime.now(timezone.utc)
            if (
                self._token is None
                or self._expires_at is None
                or self._expires_at - now < _TOKEN_REFRESH_MARGIN
            ):
                self._refresh()
            assert self._token is not None
            return self._token

    def _app_jwt(self) -> str:
        issued_at = int(time.time()) - 30
        claims = {"iat": issued_at, "exp": issued_at + 120, "iss": str(self.app_id)}
        return jwt.encode(claims, self.signing_key, algorithm="RS256")

    def _refresh(self) -> None:
        url = f"{self.base_url}/app/installations/{self.install_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self._app_jwt()}",
            "Accept": "application/vnd.github.v3+json",
        }
        proxy = self.http.proxy_for(url)
        proxies = {"http": proxy, "https": proxy} if proxy else {}
        with _tls_request_options(self.http) as tls_options:
            response = requests.post(
                url,
                headers=headers,
                timeout=self.http.timeout,
                allow_redirects=self.http.follow_redirects,
                proxies=proxies,
                **tls_options,
            )
        if response.status_code // 100 != 2:
            raise requests.HTTPError(
                f"received non 2xx response status {response.status_code} when fetching {url}",
                response=response,
            )
        payload = response.json()
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise ValueError(f"no token in response from {url}")
        self._token = token
        self._expires_at = _parse_expiry(payload.get("expires_at"))


@dataclass(frozen=True)
class GitHubAppCreds:
    """Credentials authenticating as a GitHub App installation."""

    app_id: int
    app_install_id: int
    private_key: str
    base_url: str = ""
    repo_url: str = ""
    client_cert_data: str = ""
    client_cert_key: str = ""
    insecure: bool = False
    proxy: str = ""

    def environ(self) -> tuple[Closer, dict[str, str]]:
        """Environment for git using a freshly obtained installation token."""
        token = self.get_access_token()
        return _askpass_environ(
            GITHUB_APP_USERNAME,
            token,
            self.insecure,
            self.client_cert_data,
            self.client_cert_key,
        )

    def _cache_key(self) -> str:
        material = f"{self.private_key} {self.app_id} {self.app_install_id} {self.base_url}"
        return hashlib.sha256(material.encode()).hexdigest()

    def get_access_token(self) -> str:
        """Installation access token; the token source is cached for re-use."""
        key = self._cache_key()
        with _token_cache_lock:
            source = _token_cache.get(key)
        if source is not None:
            return source.token()

        base_url = self.base_url.removesuffix("/") if self.base_url else DEFAULT_GITHUB_API_URL
        http = get_repo_http_client(base_url, self.insecure, self, self.proxy)
        signing_key = serialization.load_pem_private_key(self.private_key.encode(), password=None)
        source = _InstallationTokenSource(
            app_id=self.app_id,
            install_id=self.app_install_id,
            signing_key=signing_key,
            base_url=base_url,
            http=http,
        )
        with _token_cache_lock:
            _token_cache[key] = source
        return source.token()

    def has_client_cert(self) -> bool:
        return self.client_cert_data != "" and self.client_cert_key != ""