"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for proxyauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from PROXYAUTH_* environment
      variables and an optional .env file. Type coercion and validation are
      built in (e.g. PROXYAUTH_DEBUG=true -> debug=True).

  @model_validator(mode="after"): Derives the file locations that default to
      paths under conf_root, and rejects a docker hasher with no container.

Layer rule: core/ is the kernel. This module may not import from store/,
materialize/, or access/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("proxyauth.config")

_DEFAULT_CONF_ROOT = Path("/opt/easyengine/services/nginx-proxy")
_DEFAULT_CONTAINER = "services_global-nginx-proxy_1"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    Environment variable name mapping: PROXYAUTH_ + uppercased field name.
    E.g. `htpasswd_dir` reads from PROXYAUTH_HTPASSWD_DIR.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROXYAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "derive from conf_root".
    db_url: str = ""

    # ------------------------------------------------------------------
    # Proxy file locations (host side)
    # ------------------------------------------------------------------

    conf_root: Path = _DEFAULT_CONF_ROOT
    htpasswd_dir: Path | None = None
    vhost_dir: Path | None = None

    # ------------------------------------------------------------------
    # Credential hasher/writer
    # ------------------------------------------------------------------

    # "bcrypt" hashes in-process; "docker" runs htpasswd inside the proxy.
    hasher: Literal["bcrypt", "docker"] = "bcrypt"
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    proxy_container: str = _DEFAULT_CONTAINER
    container_htpasswd_dir: str = "/etc/nginx/htpasswd"

    # ------------------------------------------------------------------
    # Reverse proxy reload (empty string disables the reload step)
    # ------------------------------------------------------------------

    reload_command: str = (
        f"docker exec {_DEFAULT_CONTAINER} sh -c "
        '"/app/docker-entrypoint.sh /usr/local/bin/docker-gen /app/nginx.tmpl '
        '/etc/nginx/conf.d/default.conf; /usr/sbin/nginx -s reload"'
    )

    # ------------------------------------------------------------------
    # Defaults for credential commands and admin-tools bootstrap
    # ------------------------------------------------------------------

    default_username: str = "easyengine"
    frontend_subnet_ip: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def derive_paths(self) -> "Settings":
        """Fill in the paths that default to locations under conf_root.

        htpasswd_dir and vhost_dir mirror the nginx-proxy service layout
        (<conf_root>/htpasswd and <conf_root>/vhost.d). The store defaults to
        an SQLite file next to them so one directory holds all proxy state.
        """
        if self.htpasswd_dir is None:
            self.htpasswd_dir = self.conf_root / "htpasswd"
        if self.vhost_dir is None:
            self.vhost_dir = self.conf_root / "vhost.d"
        if not self.db_url:
            self.db_url = f"sqlite:///{self.conf_root / 'proxyauth.db'}"
        if self.hasher == "docker" and not self.proxy_container:
            raise ValueError("PROXYAUTH_PROXY_CONTAINER is required when PROXYAUTH_HASHER=docker.")
        if not self.reload_command:
            logger.debug("Reverse proxy reload disabled (empty reload_command)")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
