"""
Portwarden Configuration: validated settings loaded from the environment.

Recognised variables:
    BW_SESSION                       pre-authenticated vault session (used as-is)
    PORTWARDEN_BW_BINARY             vault command line tool (default: bw)
    PORTWARDEN_SLEEP_MILLISECONDS    delay between attachment requests (default: 300)
    PORTWARDEN_NO_LOGOUT             "1"/"true" keeps the vault logged in afterwards
    PORTWARDEN_SKIP_EXISTING         "1"/"true" skips items already in the target vault
    PORTWARDEN_KDF_LOG2_N            scrypt cost as a power of two (default: 15)
    PORTWARDEN_BACKUP_DIR            where the web front end writes backups
    PORTWARDEN_AUDIT_LOG_DIR         audit trail directory

Security Note:
    The session token is a bearer credential. Never log it.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_SLEEP_MILLISECONDS = 300
DEFAULT_KDF_LOG2_N = 15

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


class PortwardenSettings(BaseModel):
    """Validated portwarden configuration."""

    bw_binary: str = Field(default="bw", min_length=1)
    session: Optional[str] = None
    sleep_milliseconds: int = Field(default=DEFAULT_SLEEP_MILLISECONDS, ge=0)
    no_logout: bool = False
    skip_existing: bool = False
    kdf_log2_n: int = Field(default=DEFAULT_KDF_LOG2_N, ge=10, le=20)
    backup_dir: Path = Field(default=Path("./portwarden_backup"))
    audit_log_dir: Path = Field(default=Path("./audit_logs"))

    @field_validator("session")
    @classmethod
    def blank_session_is_none(cls, v: Optional[str]) -> Optional[str]:
        """An empty BW_SESSION means no session."""
        if v is not None and not v.strip():
            return None
        return v

    @classmethod
    def from_env(cls) -> "PortwardenSettings":
        """Create settings from environment variables.

        Returns:
            Populated PortwardenSettings instance.
        """
        values = {
            "session": os.environ.get("BW_SESSION"),
            "no_logout": _env_flag("PORTWARDEN_NO_LOGOUT"),
            "skip_existing": _env_flag("PORTWARDEN_SKIP_EXISTING"),
        }
        optional = {
            "bw_binary": "PORTWARDEN_BW_BINARY",
            "sleep_milliseconds": "PORTWARDEN_SLEEP_MILLISECONDS",
            "kdf_log2_n": "PORTWARDEN_KDF_LOG2_N",
            "backup_dir": "PORTWARDEN_BACKUP_DIR",
            "audit_log_dir": "PORTWARDEN_AUDIT_LOG_DIR",
        }
        for field, env_name in optional.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field] = raw
        settings = cls(**values)
        logger.debug(
            "Loaded settings: bw=%s sleep_ms=%d env_session=%s",
            settings.bw_binary, settings.sleep_milliseconds, settings.session is not None,
        )
        return settings
