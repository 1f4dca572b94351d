"""
materialize/proxy.py -- Reverse-proxy reload trigger.

The reload regenerates the proxy config (docker-gen) and signals nginx. It
runs after every materialization. An empty command disables it, which is
what tests and hosts without a proxy container use.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Callable
from typing import Optional

from core.errors import ProxyReloadError

logger = logging.getLogger("proxyauth.materialize.proxy")


class ProxyReloader:
    def __init__(
        self,
        command: str,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        timeout: Optional[float] = None,
    ) -> None:
        self.command = command
        self._run = runner
        self.timeout = timeout

    def reload(self) -> None:
        """Run the reload command. Raises ProxyReloadError on failure."""
        if not self.command:
            logger.debug("Reload command not configured, skipping proxy reload")
            return
        logger.info("Reloading global reverse proxy.")
        try:
            result = self._run(shlex.split(self.command), capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProxyReloadError("Could not run the reverse proxy reload command", cause=exc) from exc
        if result.returncode != 0:
            raise ProxyReloadError(
                f"Reverse proxy reload exited with status {result.returncode}",
                context={"stderr": result.stderr.strip()[:500]},
            )
