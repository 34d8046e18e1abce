"""Configuration module for Family Ledger.

Configuration is loaded once at import time and exposed through the module-level ``settings`` object.

Config discovery:
-----------------
The config file is discovered in the following order: (1) via the ``FAMILY_LEDGER_CONFIG_PATH`` environment
variable, (2) ``.ledger`` in the project root, (3) ``.env`` in the project root, (4) environment variables only.
Running with environment variables alone is supported so containers and CI need no file on disk.

Secrets:
--------
The signing key and the MongoDB URL are never hardcoded. Validators refuse empty or placeholder values at startup,
so a misconfigured deployment fails before serving a request.

How to extend:
--------------
- Add new fields to ``Settings`` and document them.
- Keep the config module free of imports from the rest of the package; the logging manager depends on it.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
LEDGER_FILENAME: str = ".ledger"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "FAMILY_LEDGER_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


def get_config_path() -> Optional[str]:
    """Determine the config file path to use, in order of precedence:
    1. Environment variable FAMILY_LEDGER_CONFIG_PATH
    2. .ledger in project root
    3. .env in project root
    4. None (environment variables only)

    Returns:
        Optional[str]: Path to config file, or None if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    ledger_path: Path = PROJECT_ROOT / LEDGER_FILENAME
    if ledger_path.exists():
        return str(ledger_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=True)


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All fields are loaded from the environment or the discovered config file.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    DEBUG: bool = True
    APP_NAME: str = "Family_Ledger-app"
    ENV: str = "dev"
    ENV_PREFIX: str = "dev"
    CORS_ORIGINS: str = "http://localhost:3000"

    # Token signing
    SECRET_KEY: SecretStr = SecretStr("")  # Must be set in .ledger or environment
    ALGORITHM: str = "HS256"
    BEARER_TOKEN_EXPIRE_DAYS: int = 7

    # Browser sessions
    SESSION_COOKIE_NAME: str = "ledger_session"
    SESSION_EXPIRE_MINUTES: int = 30 * 24 * 60  # 30 days

    # Password hashing
    BCRYPT_ROUNDS: int = 12

    # MongoDB configuration
    MONGODB_URL: str = ""  # Must be set in .ledger or environment
    MONGODB_DATABASE: str = "family_ledger"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Redis configuration
    # REDIS_URL is the effective URL; when absent it is built from host/port/credentials below.
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "127.0.0.1"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_USERNAME: Optional[str] = None
    REDIS_PASSWORD: Optional[SecretStr] = None

    # Rate limiting
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_PERIOD_SECONDS: int = 60
    BLACKLIST_THRESHOLD: int = 10  # Number of violations before blacklisting
    BLACKLIST_DURATION: int = 60 * 60  # Blacklist for 1 hour (in seconds)
    AUTH_RATE_LIMIT: int = 10  # Login/register attempts per period per IP
    AUTH_RATE_PERIOD: int = 60
    FAMILY_CREATE_RATE_LIMIT: int = 5  # Families created per hour per user
    FAMILY_CREATE_RATE_PERIOD: int = 3600
    FAMILY_JOIN_RATE_LIMIT: int = 10  # Join attempts per hour per user
    FAMILY_JOIN_RATE_PERIOD: int = 3600

    # Invite codes: one initial draw plus up to 10 retries on collision
    INVITE_CODE_MAX_ATTEMPTS: int = 11

    # Receipt scanning (external vision service)
    RECEIPT_SCAN_ENABLED: bool = False
    RECEIPT_SCAN_API_KEY: Optional[SecretStr] = None
    RECEIPT_SCAN_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    RECEIPT_SCAN_MODEL: str = "gemini-2.5-flash"
    RECEIPT_SCAN_TIMEOUT_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOKI_ENABLED: bool = False
    LOKI_URL: str = "http://localhost:3100/loki/api/v1/push"
    LOKI_COMPRESS: bool = True

    @field_validator("SECRET_KEY", mode="before")
    @classmethod
    def no_hardcoded_secrets(cls, v, info):
        if not v or "change" in str(v).lower() or "0000" in str(v) or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .ledger and not hardcoded!")
        return v

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v, info):
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .ledger and not empty!")
        return v

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def validate_bcrypt_rounds(cls, v):
        """bcrypt accepts cost factors between 4 and 31."""
        if v < 4 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() in ("prod", "production")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get list of allowed CORS origins."""
        if not self.CORS_ORIGINS:
            return []
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


# Global settings instance
settings: Settings = Settings()

# Compute effective REDIS_URL if not explicitly provided.
if not settings.REDIS_URL:
    creds = ""
    if settings.REDIS_USERNAME or settings.REDIS_PASSWORD:
        username = settings.REDIS_USERNAME or ""
        password = settings.REDIS_PASSWORD.get_secret_value() if settings.REDIS_PASSWORD else ""
        if username and password:
            creds = f"{username}:{password}@"
        elif password:
            creds = f":{password}@"
    settings.REDIS_URL = f"redis://{creds}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
