"""
SessionManager: obtain an unlocked, authenticated vault session.

Acquisition order:
    1. An environment-provided session token, used as-is (not validated).
    2. ``bw unlock``: the user is logged in but the vault is locked.
    3. ``bw login``: only when unlock answers "not logged in".

State machine::

    NO_SESSION --(env token)--> READY
    NO_SESSION --> UNLOCKING --> READY | LOGGED_OUT | FAILED
    LOGGED_OUT --> LOGGING_IN --> READY | FAILED

Security Note:
    The session token is a bearer credential. It lives in memory only and
    is never logged or written to disk.
"""
import logging
from enum import Enum
from typing import Optional

from ..exceptions import NotLoggedInError, PortwardenError, VaultCommandError
from .client import BWClient, CredentialChannel, InteractiveChannel
from .session_key import SessionKeyExtractor, classify_failure

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    UNLOCKING = "unlocking"
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    READY = "ready"
    FAILED = "failed"


class SessionManager:
    """Drives the vault tool through unlock/login to a session token.

    Args:
        client: Vault tool wrapper.
        channel: Where credentials typed by the user come from
            (default: this process's stdin, passed through unbuffered).
        env_session: Pre-authenticated session token, e.g. from BW_SESSION.
        extractor: Output parser (default: SessionKeyExtractor()).
    """

    def __init__(
        self,
        client: BWClient,
        channel: Optional[CredentialChannel] = None,
        env_session: Optional[str] = None,
        extractor: Optional[SessionKeyExtractor] = None,
    ):
        self._client = client
        self._channel = channel or InteractiveChannel()
        self._env_session = env_session or None
        self._extractor = extractor or SessionKeyExtractor()
        self._session: Optional[str] = None
        self.state = SessionState.NO_SESSION
        self.last_error: Optional[Exception] = None

    @property
    def session(self) -> Optional[str]:
        """The current session token, if one has been acquired."""
        return self._session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def acquire_session_key(self) -> str:
        """Return a usable session token, unlocking or logging in as needed.

        Raises:
            VaultLockedError, InvalidMasterPasswordError, UnrecognizedOutputError:
                from unlock (login is not attempted) or from login.
            NotLoggedInError: login itself reported not logged in.
            VaultToolUnavailableError: the tool could not be launched.
        """
        if self._session:
            return self._session

        if self._env_session:
            logger.debug("Using environment-provided session")
            return self._ready(self._env_session)

        try:
            try:
                return self._ready(self._unlock())
            except NotLoggedInError:
                logger.info("Not logged in to the vault; starting login")
                self.state = SessionState.LOGGED_OUT
            return self._ready(self._login())
        except PortwardenError as e:
            self._fail(e)
            raise

    def login_with_credentials(
        self,
        email: str,
        password: str,
        method: Optional[int] = None,
        code: Optional[str] = None,
    ) -> str:
        """Log in non-interactively (web front end) and return the session token.

        Args:
            email: Account email.
            password: Master password.
            method: Two-step login provider number, if the account uses one.
            code: Two-step login code for ``method``.
        """
        self.state = SessionState.LOGGING_IN
        try:
            output = self._client.login_with_password(email, password, method=method, code=code)
            token = self._extractor.extract(str(output.stdout), output.stderr)
        except PortwardenError as e:
            self._fail(e)
            raise
        return self._ready(token)

    def logout(self) -> None:
        """Log out of the vault tool. Being logged out already is not an error.

        Also forgets the cached and environment-provided session, so the
        next acquisition goes through unlock/login.

        Raises:
            VaultCommandError: logout failed for another reason.
        """
        output = self._client.logout()
        self._session = None
        self._env_session = None
        self.state = SessionState.NO_SESSION
        if output.ok:
            logger.info("Logged out of the vault")
            return
        failure = classify_failure(output.text)
        if isinstance(failure, NotLoggedInError):
            logger.debug("Logout: already logged out")
            return
        raise VaultCommandError("logout", output.returncode, output.stderr)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unlock(self) -> str:
        self.state = SessionState.UNLOCKING
        output = self._client.unlock(self._channel)
        return self._extractor.extract(str(output.stdout), output.stderr)

    def _login(self) -> str:
        self.state = SessionState.LOGGING_IN
        output = self._client.login(self._channel)
        return self._extractor.extract(str(output.stdout), output.stderr)

    def _ready(self, token: str) -> str:
        self._session = token
        self.state = SessionState.READY
        self.last_error = None
        return token

    def _fail(self, error: Exception) -> None:
        self.state = SessionState.FAILED
        self.last_error = error
        logger.warning("Session acquisition failed: %s", type(error).__name__)
