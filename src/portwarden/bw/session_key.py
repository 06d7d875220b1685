"""Session key extraction from the vault tool's human-readable output.

``bw unlock`` and ``bw login`` do not speak a structured protocol. Their
stdout mixes echoed prompts, status sentences and, on success, the session
token. On failure the tool may still print noise to stdout that looks like
an identifier, so known failure markers are always checked before any
token is accepted.
"""

import logging
import re
from typing import Optional, Tuple, Type

from ..exceptions import (
    InvalidMasterPasswordError,
    NotLoggedInError,
    SessionError,
    UnrecognizedOutputError,
    VaultLockedError,
)

logger = logging.getLogger(__name__)

BW_ERR_NOT_LOGGED_IN = "You are not logged in."
BW_ERR_VAULT_LOCKED = "Vault is locked."
BW_ERR_INVALID_MASTER_PASSWORD = "Invalid master password."
BW_ERR_BAD_CREDENTIALS = "Username or password is incorrect."

BW_PROMPT_EMAIL = "? Email address:"
BW_PROMPT_MASTER_PASSWORD = "? Master password:"

# Checked in order; the first marker present wins.
FAILURE_MARKERS: Tuple[Tuple[str, Type[SessionError]], ...] = (
    (BW_ERR_NOT_LOGGED_IN, NotLoggedInError),
    (BW_ERR_VAULT_LOCKED, VaultLockedError),
    (BW_ERR_INVALID_MASTER_PASSWORD, InvalidMasterPasswordError),
    (BW_ERR_BAD_CREDENTIALS, InvalidMasterPasswordError),
)

MIN_TOKEN_LENGTH = 16

_EXPORT_PATTERN = re.compile(r'export BW_SESSION="([^"\s]+)"')
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9+/=_\-.]+$")
_PROMPT_PATTERN = re.compile(r"^\?\s[^:]*:\s*(\[hidden\])?\s*")


def classify_failure(text: str) -> Optional[SessionError]:
    """Return the session error matching a known failure marker in text, or None."""
    for marker, error_cls in FAILURE_MARKERS:
        if marker in text:
            return error_cls(marker)
    return None


def looks_like_token(candidate: str) -> bool:
    """True for a single whitespace-free chunk of token alphabet of useful length."""
    return len(candidate) >= MIN_TOKEN_LENGTH and bool(_TOKEN_PATTERN.match(candidate))


class SessionKeyExtractor:
    """Find a session token, or the reason there is none, in captured output."""

    def extract(self, stdout: str, stderr: str = "") -> str:
        """Return the session token found in the output.

        Raises:
            NotLoggedInError, VaultLockedError, InvalidMasterPasswordError:
                a known failure marker is present (stdout or stderr).
            UnrecognizedOutputError: neither a marker nor a token was found.
        """
        failure = classify_failure(f"{stdout}\n{stderr}")
        if failure is not None:
            raise failure

        match = _EXPORT_PATTERN.search(stdout)
        if match:
            return match.group(1)

        for line in reversed(stdout.splitlines()):
            candidate = _PROMPT_PATTERN.sub("", line.strip()).strip()
            if looks_like_token(candidate):
                return candidate

        logger.debug("No session token in %d bytes of output", len(stdout))
        raise UnrecognizedOutputError(
            "session key extraction failed: " + (stderr.strip() or "unrecognized output")
        )
