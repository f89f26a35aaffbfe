# repogit

`repogit` works with remote Git repositories through the `git` command line.
It resolves revisions to commit SHAs without cloning, lists branches and tags,
fetches, checks out, commits and pushes, and prepares the environment `git`
needs for HTTPS, SSH or GitHub App credentials.

## Requirements

- Python 3.10 or later
- `git` on the `PATH` (and `git-lfs` for repositories with LFS enabled)

## Installation

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
```

## Modules

- `repogit.urls` — recognising and normalising repository URLs.
- `repogit.transport` — Git references, listing remote references, HTTP client
  settings, proxy selection and the locations of TLS certificates and SSH
  known hosts.
- `repogit.creds` — credential types that produce the environment for `git`.
- `repogit.client` — `NativeGitClient`, which runs `git` in a local working copy.
- `repogit.ssh` — `PublicKeysWithOptions`, describing SSH public key
  authentication with configurable key exchange algorithms.

## Working with URLs

```python
from repogit.urls import is_commit_sha, is_ssh_url, same_url, normalize_git_url

is_commit_sha("9d921f65f3c5373b682e2eb4b37afba6592e8f8b")   # True
is_ssh_url("git@example.com:project/test.git")            # (True, "git")
same_url("https://EXAMPLE.com/project/test",
         "https://example.com/project/test.git")           # True
normalize_git_url("git@example.com:project/test.git")     # "git@example.com/project/test"
```

`normalize_git_url` returns `""` for a URL it cannot parse, and `same_url`
is false whenever either side normalises to `""`.

## Resolving revisions and listing refs

```python
from repogit.client import new_client_ext
from repogit.creds import NopCreds

client = new_client_ext("https://example.com/project/repo.git", "/tmp/repo", creds=NopCreds())
sha = client.ls_remote("HEAD")
refs = client.ls_refs()
print(refs.branches, refs.tags)
```

`ls_remote` returns a full 40-character SHA unchanged, resolves branches,
tags and symbolic references such as `HEAD` from `git ls-remote --symref`,
and returns a revision of 7 or more hexadecimal characters as is when it
resolves to nothing else. Otherwise it raises `GitError`. It tries as many
times as `max_attempts_count()` says, which reads `ARGOCD_GIT_ATTEMPTS_COUNT`
(at least 1; a value that is not a number raises `ValueError`).

`new_client` picks a working directory under the system temporary directory
derived from the normalised repository URL; `new_client_ext` takes one
explicitly. Both accept an optional reference cache (an object with
`get_git_references` and `set_git_references`), a flag allowing references to
be read from it, and `EventHandlers` whose `on_ls_remote` and `on_fetch`
hooks are called with the repository URL and return a callback run when the
operation ends. `verify_repo_access` resolves `HEAD` of a repository with the
given credentials and returns the SHA, raising `GitError` if it cannot.

## Local operations

`init()` creates the working copy with an `origin` remote unless a `.git`
directory is already there. After that, `fetch`, `checkout`, `ls_files`,
`ls_large_files`, `add`, `commit` (with `CommitOptions`), `branch`, `push`,
`config`, `sym_ref_to_branch`, `commit_sha` and `revision_metadata` run the
matching `git` commands inside `root()`. Failures raise `GitError`, whose
`output` attribute holds the command's standard output.

`checkout("")` and `checkout("HEAD")` check out `origin/HEAD`, update
submodules when `.gitmodules` exists (unless `ARGOCD_GIT_MODULES_ENABLED` is
`false`) and finish with `git clean -fdx`. Commands run with `HOME=/dev/null`
and `GIT_LFS_SKIP_SMUDGE=1`; for HTTPS repositories a stored CA bundle is
passed through `GIT_SSL_CAINFO`, or verification is turned off for insecure
clients, and a configured proxy replaces the proxy variables.

## Credentials

- `NopCreds` — no credentials.
- `HTTPSCreds` — username and password handed to `git` through the
  `git-ask-pass.sh` askpass helper, with an optional TLS client certificate
  written to temporary files.
- `SSHCreds` — a private key written to a temporary file and used through
  `GIT_SSH_COMMAND`, checked against the known hosts file unless insecure.
- `GitHubAppCreds` — an installation access token obtained for a GitHub App
  with a signed JWT; the token source is cached for an hour per app and key.

```python
from repogit.creds import HTTPSCreds

password = "password"
creds = HTTPSCreds(username="user", password=password)
closer, env = creds.environ()
try:
    ...  # run git with env added to its environment
finally:
    closer.close()
```

Each `environ()` returns a closer and a dictionary of environment variables.
Closers are context managers; closing one removes the temporary files it
holds. Secrets are written below `/dev/shm` when it is writable.

TLS certificates for a host are looked up in the directory named by
`ARGOCD_TLS_DATA_PATH` (default `/app/config/tls`), and the SSH known hosts
file in `ARGOCD_SSH_DATA_PATH` (default `/app/config/ssh`). Signature checks
use `ARGOCD_GNUPGHOME` (default `/app/config/gpg/keys`).

## What the package does not do

- It has no command line program of its own; it is a library.
- It does not ship the helper scripts it calls: `git-ask-pass.sh` (used by
  `HTTPSCreds` and `GitHubAppCreds`) and `git-verify-wrapper.sh` (used by
  `verify_commit_signature`) must be on the `PATH`.
- `RepoHTTPClient` and `PublicKeysWithOptions` only describe connection
  settings; all talking to remotes is done by the `git` command line, apart
  from the token request of `GitHubAppCreds`.