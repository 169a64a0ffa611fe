"""Where the update supervisor learns about newer versions.

Both sources expose the same four steps: ``local_marker``, ``remote_marker``,
``fetch`` and ``build``. Check failures raise UpdateCheckFailure, fetch and
build failures raise BuildOrFetchFailure.
"""

import importlib.metadata
import subprocess
import sys
from pathlib import Path
from typing import Optional

import httpx

from yolorelay.errors import BuildOrFetchFailure, UpdateCheckFailure

GIT_TIMEOUT_SECONDS = 45.0
PIP_TIMEOUT_SECONDS = 300.0
HTTP_TIMEOUT_SECONDS = 20.0
PYPI_URL = "https://pypi.org/pypi/{name}/json"
MAX_DETAIL_LENGTH = 220


class PypiVersionSource:
    """Compares the installed distribution against the latest PyPI release."""

    def __init__(self, package: str, *, client: Optional[httpx.Client] = None):
        self.package = package
        self._client = client

    def __str__(self) -> str:
        return f"pypi:{self.package}"

    def local_marker(self) -> str:
        try:
            return importlib.metadata.version(self.package)
        except importlib.metadata.PackageNotFoundError as exc:
            raise UpdateCheckFailure(f"{self.package} is not installed as a distribution") from exc

    def remote_marker(self) -> str:
        url = PYPI_URL.format(name=self.package)
        try:
            if self._client is not None:
                response = self._client.get(url)
            else:
                response = httpx.get(url, timeout=HTTP_TIMEOUT_SECONDS)
            response.raise_for_status()
            version = response.json()["info"]["version"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise UpdateCheckFailure(f"PyPI lookup failed: {_short(str(exc))}") from exc
        if not isinstance(version, str) or not version:
            raise UpdateCheckFailure("PyPI returned no version")
        return version

    def fetch(self) -> None:
        # pip downloads and installs in one step
        return None

    def build(self) -> None:
        proc = _run_pip(["install", "--upgrade", self.package])
        if proc.returncode != 0:
            raise BuildOrFetchFailure(f"pip upgrade failed: {_short(proc.stderr or proc.stdout)}")


class GitVersionSource:
    """Compares the checkout's HEAD against the remote branch head."""

    def __init__(self, repo_root, *, branch: str = "main", remote: str = "origin"):
        self.repo_root = Path(repo_root)
        self.branch = branch
        self.remote = remote

    def __str__(self) -> str:
        return f"git:{self.repo_root}@{self.remote}/{self.branch}"

    def local_marker(self) -> str:
        proc = _git(self.repo_root, "rev-parse", "HEAD")
        if proc.returncode != 0:
            raise UpdateCheckFailure(f"`git rev-parse HEAD` failed: {_short(proc.stderr)}")
        return proc.stdout.strip()

    def remote_marker(self) -> str:
        proc = _git(self.repo_root, "ls-remote", self.remote, f"refs/heads/{self.branch}")
        if proc.returncode != 0:
            raise UpdateCheckFailure(f"`git ls-remote` failed: {_short(proc.stderr)}")
        parts = proc.stdout.split()
        if not parts:
            raise UpdateCheckFailure(f"branch {self.branch} not found on {self.remote}")
        return parts[0]

    def fetch(self) -> None:
        dirty = _git(self.repo_root, "status", "--porcelain")
        if dirty.returncode != 0:
            raise BuildOrFetchFailure(f"unable to inspect git status: {_short(dirty.stderr)}")
        if dirty.stdout.strip():
            raise BuildOrFetchFailure("local changes detected; refusing to pull")

        pull = _git(self.repo_root, "pull", "--ff-only", "--no-rebase", self.remote, self.branch)
        if pull.returncode != 0:
            raise BuildOrFetchFailure(f"`git pull --ff-only` failed: {_short(pull.stderr)}")

        # a branch that is ahead of the remote pulls cleanly but never matches it
        try:
            if self.local_marker() != self.remote_marker():
                raise BuildOrFetchFailure("checkout still differs from remote after pull (local commits?)")
        except UpdateCheckFailure as exc:
            raise BuildOrFetchFailure(str(exc)) from exc

    def build(self) -> None:
        proc = _run_pip(["install", str(self.repo_root)])
        if proc.returncode != 0:
            raise BuildOrFetchFailure(f"pip install from checkout failed: {_short(proc.stderr or proc.stdout)}")


def _run(argv, timeout):
    return subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False)


def _run_pip(args):
    """Run pip under this interpreter. A pip that cannot start is a build failure."""
    try:
        return _run([sys.executable, "-m", "pip", *args], PIP_TIMEOUT_SECONDS)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise BuildOrFetchFailure(f"pip could not run: {_short(str(e))}") from e


def _git(repo_root, *args):
    """Run git in repo_root. Launch errors come back as a failed result."""
    argv = ["git", "-C", str(repo_root), *args]
    try:
        return _run(argv, GIT_TIMEOUT_SECONDS)
    except (OSError, subprocess.TimeoutExpired) as e:
        return subprocess.CompletedProcess(argv, returncode=1, stdout="", stderr=str(e))


def _short(text, limit=MAX_DETAIL_LENGTH):
    """Collapse whitespace in tool output and clip it for one log line."""
    detail = " ".join(text.split())
    if not detail:
        return "no error details available"
    if len(detail) > limit:
        detail = detail[:limit - 3] + "..."
    return detail
