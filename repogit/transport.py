"""Remote references, HTTP client settings and TLS/SSH data locations."""

from __future__ import annotations

import enum
import ipaddress
import logging
import os
import re
import subprocess
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlsplit

from cryptography import x509
from cryptography.hazmat.primitives import serialization

log = logging.getLogger(__name__)

DEFAULT_TLS_DATA_PATH = "/app/config/tls"
DEFAULT_SSH_DATA_PATH = "/app/config/ssh"
SSH_KNOWN_HOSTS_NAME = "ssh_known_hosts"
ENV_TLS_DATA_PATH = "ARGOCD_TLS_DATA_PATH"
ENV_SSH_DATA_PATH = "ARGOCD_SSH_DATA_PATH"

_PEM_CERT_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)

# Short name rules, checked in this order.
_SHORT_NAME_RULES: tuple[tuple[str, str], ...] = (
    ("refs/remotes/", "/HEAD"),
    ("refs/remotes/", ""),
    ("refs/heads/", ""),
    ("refs/tags/", ""),
    ("refs/", ""),
)

ProxyCallback = Callable[[Optional[str]], Optional[str]]


class RefType(enum.Enum):
    """Kind of a Git reference."""

    HASH = "hash"
    SYMBOLIC = "symbolic"


@dataclass(frozen=True)
class Reference:
    """A named Git reference pointing at a commit or at another reference."""

    name: str
    sha: str = ""
    target: str = ""
    type: RefType = RefType.HASH

    def is_branch(self) -> bool:
        return self.name.startswith("refs/heads/")

    def is_tag(self) -> bool:
        return self.name.startswith("refs/tags/")

    def short_name(self) -> str:
        """The shortest unambiguous name of the reference."""
        for prefix, suffix in _SHORT_NAME_RULES:
            if not self.name.startswith(prefix):
                continue
            rest = self.name[len(prefix):]
            if suffix:
                if not rest.endswith(suffix) or len(rest) == len(suffix):
                    continue
                rest = rest[: -len(suffix)]
            if rest:
                return rest
        return self.name


def _proxy_from_environment(request_url: Optional[str]) -> Optional[str]:
    if not request_url:
        return None
    parts = urlsplit(request_url)
    host = parts.hostname or ""
    if host == "localhost":
        return None
    try:
        if ipaddress.ip_address(host).is_loopback:
            return None
    except ValueError:
        pass
    proxies = urllib.request.getproxies_environment()
    if proxies.get("no") and urllib.request.proxy_bypass_environment(host, proxies):
        return None
    proxy = proxies.get(parts.scheme)
    if not proxy:
        return None
    if "://" not in proxy:
        proxy = "http://" + proxy
    return proxy


def get_proxy_callback(proxy_url: str) -> ProxyCallback:
    """Return a function that picks the proxy for a request URL.

    A fixed proxy URL always wins; otherwise the environment decides.
    """
    if proxy_url:
        return lambda _request_url: proxy_url
    return _proxy_from_environment


@dataclass(frozen=True)
class RepoHTTPClient:
    """Settings for talking to a repository server over HTTP(S)."""

    insecure: bool = False
    ca_certificates: tuple[str, ...] = ()
    client_cert: Optional[tuple[str, str]] = None
    proxy_callback: ProxyCallback = field(default=_proxy_from_environment, repr=False)
    timeout: float = 15.0
    follow_redirects: bool = False

    def proxy_for(self, request_url: Optional[str]) -> Optional[str]:
        """The proxy URL to use for ``request_url``, or None."""
        return self.proxy_callback(request_url)


def tls_data_path() -> str:
    """Directory holding per-host TLS certificates."""
    return os.environ.get(ENV_TLS_DATA_PATH) or DEFAULT_TLS_DATA_PATH


def ssh_known_hosts_data_path() -> str:
    """Path of the SSH known hosts file."""
    base = os.environ.get(ENV_SSH_DATA_PATH) or DEFAULT_SSH_DATA_PATH
    return os.path.join(base, SSH_KNOWN_HOSTS_NAME)


def _cert_path_for_host(host: str) -> str:
    data_path = os.path.abspath(tls_data_path())
    server_name = host.split(":", 1)[0]
    cert_path = os.path.abspath(os.path.join(data_path, server_name))
    if not cert_path.startswith(data_path):
        raise ValueError(f"could not get certificate for host {host}")
    return cert_path


def certificate_for_connect(host: str) -> list[str]:
    """PEM certificates stored for ``host``; empty if none are stored."""
    cert_path = _cert_path_for_host(host)
    try:
        with open(cert_path, encoding="utf-8") as fh:
            data = fh.read()
    except FileNotFoundError:
        return []
    certificates = _PEM_CERT_RE.findall(data)
    if not certificates:
        raise ValueError(f"no certificates found in {cert_path}")
    return certificates


def cert_bundle_path_for_repository(host: str) -> str:
    """Path of the CA bundle stored for ``host``, or "" if there is none."""
    cert_path = _cert_path_for_host(host)
    return cert_path if os.path.isfile(cert_path) else ""


def _load_client_cert(creds: Any) -> Optional[tuple[str, str]]:
    has_client_cert = getattr(creds, "has_client_cert", None)
    if not callable(has_client_cert) or not has_client_cert():
        return None
    cert_data = creds.client_cert_data
    key_data = creds.client_cert_key
    try:
        cert = x509.load_pem_x509_certificate(cert_data.encode())
        key = serialization.load_pem_private_key(key_data.encode(), password=None)
        fmt = (serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        if cert.public_key().public_bytes(*fmt) != key.public_key().public_bytes(*fmt):
            raise ValueError("private key does not match public key")
    except (ValueError, TypeError) as exc:
        log.error("Could not load Client Certificate: %s", exc)
        return None
    return cert_data, key_data


def get_repo_http_client(
    repo_url: str, insecure: bool, creds: Any, proxy_url: str
) -> RepoHTTPClient:
    """Build HTTP client settings for a repository.

    Insecure clients skip certificate checks; otherwise any certificates stored
    for the repository host are trusted. On lookup errors a default client
    results.
    """
    proxy = get_proxy_callback(proxy_url)
    if insecure:
        return RepoHTTPClient(
            insecure=True, client_cert=_load_client_cert(creds), proxy_callback=proxy
        )
    try:
        host = urlsplit(repo_url).netloc
        certificates = certificate_for_connect(host)
    except (ValueError, OSError):
        return RepoHTTPClient()
    return RepoHTTPClient(
        ca_certificates=tuple(certificates),
        client_cert=_load_client_cert(creds),
        proxy_callback=proxy,
    )


def parse_ls_remote(output: str) -> list[Reference]:
    """Parse the output of ``git ls-remote --symref`` into references."""
    refs: dict[str, Reference] = {}
    for line in output.splitlines():
        if not line.strip():
            continue
        left, sep, name = line.partition("\t")
        if not sep or not name:
            raise ValueError(f"malformed ls-remote line: {line!r}")
        name = name.strip()
        if name.endswith("^{}"):
            continue
        if left.startswith("ref: "):
            refs[name] = Reference(name=name, target=left[5:].strip(), type=RefType.SYMBOLIC)
        elif name not in refs:
            refs[name] = Reference(name=name, sha=left.strip())
    return list(refs.values())


def list_remote(repo_url: str, env: Optional[Mapping[str, str]] = None) -> list[Reference]:
    """List the references advertised by a remote repository.

    Raises subprocess.CalledProcessError when git fails.
    """
    run_env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})}
    result = subprocess.run(
        ["git", "ls-remote", "--symref", repo_url],
        env=run_env,
        capture_output=True,
        text=True,
        check=True,
    )
    return parse_ls_remote(result.stdout)