"""Credential lookup for catalog APIs.

Keys are loaded in priority order:
  1. Shell environment variables (highest priority)
  2. .env file in the current directory
  3. ~/.biblink/.env

Variables per source:
    ads              ->  ADS_API_KEY (required)
    semanticscholar  ->  S2_API_KEY (optional, raises rate limits)
    openalex         ->  OPENALEX_EMAIL (optional, polite pool)
"""

import os
from pathlib import Path
from typing import Optional, Protocol

from dotenv import load_dotenv

CONFIG_DIR = Path.home() / ".biblink"
PERSISTENT_ENV = CONFIG_DIR / ".env"

API_KEY_VARS = {
    "ads": "ADS_API_KEY",
    "semanticscholar": "S2_API_KEY",
    "openalex": "OPENALEX_API_KEY",
}

EMAIL_VARS = {
    "openalex": "OPENALEX_EMAIL",
    "crossref": "CROSSREF_EMAIL",
}


class CredentialProvider(Protocol):
    """What sources need from the credential store."""

    def api_key(self, source_id: str) -> Optional[str]: ...

    def email(self, source_id: str) -> Optional[str]: ...


class EnvCredentialProvider:
    """Credentials from environment variables and .env files."""

    def __init__(self, load_env_files: bool = True):
        if load_env_files:
            # dotenv never overwrites variables that are already set
            load_dotenv()
            if PERSISTENT_ENV.exists():
                load_dotenv(PERSISTENT_ENV)

    def api_key(self, source_id: str) -> Optional[str]:
        var = API_KEY_VARS.get(source_id)
        return (os.getenv(var) or None) if var else None

    def email(self, source_id: str) -> Optional[str]:
        var = EMAIL_VARS.get(source_id)
        return (os.getenv(var) or None) if var else None


class StaticCredentialProvider:
    """Fixed credentials, for hosts with their own secret store and for tests."""

    def __init__(
        self,
        api_keys: dict[str, str] | None = None,
        emails: dict[str, str] | None = None,
    ):
        self._api_keys = dict(api_keys or {})
        self._emails = dict(emails or {})

    def api_key(self, source_id: str) -> Optional[str]:
        return self._api_keys.get(source_id)

    def email(self, source_id: str) -> Optional[str]:
        return self._emails.get(source_id)


def check_env() -> list[tuple[str, bool]]:
    """Return (var_name, is_set) for every known credential variable."""
    names = sorted(set(API_KEY_VARS.values()) | set(EMAIL_VARS.values()))
    return [(name, bool(os.getenv(name))) for name in names]
