"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for IdentityGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Complex fields such as trusted_ip_ranges
      are read as JSON, e.g.
          TRUSTED_IP_RANGES='[{"start": "10.0.0.0", "end": "10.0.0.255"}]'

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. A missing SECRET_KEY in production and an enabled directory
      without connection parameters both abort startup, never a request.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identitygate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identitygate.db'}"


class IpRange(BaseModel):
    """One inclusive [start, end] address range exempt from two-factor prompts.

    Kept as raw strings: a malformed entry must not stop the service from
    booting. The network classifier skips entries it cannot parse.
    """

    start: str
    end: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    # Lifetime of a "remember me" session cookie.
    persistent_session_seconds: int = 14 * 24 * 3600
    pending_two_factor_expire_seconds: int = 300
    revalidation_interval_seconds: float = 5.0
    totp_issuer: str = "IdentityGate"

    # ------------------------------------------------------------------
    # Directory (Active Directory / LDAP)
    # ------------------------------------------------------------------

    directory_enabled: bool = False
    directory_server: str = ""  # "ldap://dc01.example.com" or "dc01.example.com"
    directory_domain: str = ""  # NetBIOS domain used for NTLM binds, e.g. "EXAMPLE"
    directory_base_dn: str = ""  # "OU=Users,DC=example,DC=com"
    directory_group_base_ou: str = ""  # "OU=Groups,DC=example,DC=com"
    directory_auto_provision: bool = False
    directory_authentication: Literal["NTLM", "SIMPLE"] = "NTLM"

    # ------------------------------------------------------------------
    # Trusted networks (two-factor exemption)
    # ------------------------------------------------------------------

    trusted_ip_ranges: list[IpRange] = []

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_directory(self) -> "Settings":
        """An enabled directory needs a server and a search base.

        Missing connection configuration is a startup failure -- discovering it
        on the first login attempt would turn every directory login into a
        silent rejection.
        """
        if self.directory_enabled:
            missing = [
                name
                for name in ("directory_server", "directory_base_dn")
                if not getattr(self, name)
            ]
            if self.directory_authentication == "NTLM" and not self.directory_domain:
                missing.append("directory_domain")
            if missing:
                raise ValueError(
                    "DIRECTORY_ENABLED is true but required settings are missing: " + ", ".join(missing).upper()
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
