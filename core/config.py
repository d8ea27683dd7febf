"""
core/config.py -- Capgate settings, read from the environment via pydantic-settings.

Nothing else in the project reads os.environ. Call get_settings() instead.

get_settings() is lru_cached: Settings() is built on first use and the same
instance is returned afterwards, so the signing secret is fixed for the life
of the process. Tests that change the environment call
get_settings.cache_clear().

Environment variables map onto field names case-insensitively (SECRET_KEY ->
secret_key). A .env file in the working directory is read too.

TOKEN_LIFETIME takes plain seconds or a suffixed duration ("30s", "5m", "1h",
"1d"); see parse_duration().

Security notes:
  [M6] SECRET_KEY must be at least 32 characters; HS256 is only as strong as
       its key.
  [M7] Without DEBUG=true a missing SECRET_KEY stops startup. With DEBUG=true
       a random key is generated and a warning logged; tokens then die with
       the process.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("capgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'capgate_auth.db'}"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: int | str) -> int:
    """Convert 300, "300", "30s", "5m", "1h" or "1d" into a number of seconds.

    Raises ValueError for anything else, including negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return value
    match = _DURATION_RE.match(str(value).lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}. Use seconds or a suffix of s, m, h, d.")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


class Settings(BaseSettings):
    """Every tunable of the auth core. Only SECRET_KEY lacks a usable default."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or raises.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Seconds until a "user" token expires. "key" tokens never expire.
    token_lifetime: int = 300
    # When on, every "user" token verifies successfully exactly once.
    single_use_tokens: bool = False

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 10

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    signin_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("token_lifetime", mode="before")
    @classmethod
    def parse_token_lifetime(cls, value):
        return parse_duration(value)

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt accepts log2 rounds in [4, 31].
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        # [M7] then [M6]; see the module docstring.
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError("SECRET_KEY is required unless DEBUG=true. Set it in the environment or .env.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first call."""
    return Settings()
