"""
materialize/writers.py -- Credential hasher/writer implementations.

A credential writer turns one (username, secret) pair into one credential
file line and writes it. The materializer decides which pairs go into a file
and in what order; the writer only knows how to hash and write a line:

    writer.write("example.com", "admin", "s3cret", create=True)   # truncate
    writer.write("example.com", "ee-42", "0ther", create=False)   # append

Two implementations:
  BcryptHtpasswdWriter -- hashes in-process with bcrypt and writes the file
      directly on the host. Lines use the "$2y$" prefix that `htpasswd -B`
      produces, so Apache-style consumers accept them unchanged.
  DockerHtpasswdWriter -- runs `htpasswd` inside the reverse-proxy container,
      which is how the proxy image expects its files to be produced.

Both raise HashingToolUnavailable from check_available() and
CredentialWriteError from write(). Secrets never appear in error messages
or logs.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Optional, Protocol

import bcrypt

from core.config import Settings
from core.errors import CredentialWriteError, HashingToolUnavailable

logger = logging.getLogger("proxyauth.materialize.writers")

Runner = Callable[..., subprocess.CompletedProcess]


class CredentialWriter(Protocol):
    def check_available(self) -> None: ...

    def write(self, file_name: str, username: str, secret: str, *, create: bool) -> None: ...


# ---------------------------------------------------------------------------
# In-process bcrypt
# ---------------------------------------------------------------------------


def hash_secret(secret: str, rounds: int = 10) -> str:
    """Return an htpasswd-compatible bcrypt hash of secret.

    Secrets longer than 72 bytes are truncated by bcrypt itself; htpasswd
    has the same limitation.
    """
    hashed = bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")
    return "$2y$" + hashed[4:]


class BcryptHtpasswdWriter:
    def __init__(self, directory: Path, rounds: int = 10) -> None:
        self.directory = Path(directory)
        self.rounds = rounds

    def check_available(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise HashingToolUnavailable(
                f"Cannot create credential directory {self.directory}", cause=exc
            ) from exc

    def write(self, file_name: str, username: str, secret: str, *, create: bool) -> None:
        path = self.directory / file_name
        line = f"{username}:{hash_secret(secret, self.rounds)}\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w" if create else "a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            raise CredentialWriteError(
                f"Could not write credential for {username} to {path}",
                context={"file": str(path), "username": username},
                cause=exc,
            ) from exc


# ---------------------------------------------------------------------------
# htpasswd inside the reverse-proxy container
# ---------------------------------------------------------------------------


class DockerHtpasswdWriter:
    def __init__(
        self,
        container: str,
        container_dir: str = "/etc/nginx/htpasswd",
        runner: Runner = subprocess.run,
        timeout: Optional[float] = None,
    ) -> None:
        self.container = container
        self.container_dir = container_dir.rstrip("/")
        self._run = runner
        self.timeout = timeout

    def check_available(self) -> None:
        logger.debug("Verifying htpasswd is present.")
        try:
            result = self._run(
                ["docker", "exec", self.container, "sh", "-c", "command -v htpasswd"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise HashingToolUnavailable(f"Could not run htpasswd check in {self.container}", cause=exc) from exc
        if result.returncode != 0:
            raise HashingToolUnavailable(f"Could not find apache2-utils installed in {self.container}.")

    def write(self, file_name: str, username: str, secret: str, *, create: bool) -> None:
        flags = "-bc" if create else "-b"
        target = f"{self.container_dir}/{file_name}"
        try:
            result = self._run(
                ["docker", "exec", self.container, "htpasswd", flags, target, username, secret],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CredentialWriteError(
                f"htpasswd failed for {username} in {target}",
                context={"file": target, "username": username},
                cause=exc,
            ) from exc
        if result.returncode != 0:
            raise CredentialWriteError(
                f"htpasswd failed for {username} in {target}: {result.stderr.strip()[:500]}",
                context={"file": target, "username": username},
            )


def build_writer(settings: Settings) -> CredentialWriter:
    if settings.hasher == "docker":
        return DockerHtpasswdWriter(settings.proxy_container, settings.container_htpasswd_dir)
    return BcryptHtpasswdWriter(settings.htpasswd_dir, rounds=settings.bcrypt_rounds)
