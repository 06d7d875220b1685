"""Backup orchestrator: backup, decrypt and restore ``.portwarden`` files.

backup:   session -> sync -> export items/folders/attachments -> encode -> file
decrypt:  file -> decode (local only, no vault tool involved)
restore:  logout -> fresh session -> file -> decode -> replay into the vault

Backup and decrypt are all-or-nothing: no partial backup file is ever
written and no unverified plaintext is ever returned. Restore collects
per-entity failures in a RestoreReport instead of aborting.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from ..bw.client import BWClient, CredentialChannel
from ..bw.export_gateway import VaultExportGateway
from ..bw.session_manager import SessionManager
from ..core.audit_log import EventSeverity, EventType, log_backup_event
from ..core.config import PortwardenSettings
from ..exceptions import InvalidSleepError, NoFilenameError, NoPassphraseError, PortwardenError
from ..models import RestoreReport, VaultSnapshot
from .backup_crypto import BACKUP_SUFFIX, BackupCodec
from .restore_engine import RestoreEngine

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def backup_path(destination: PathLike) -> Path:
    """destination with the .portwarden suffix appended when missing."""
    path = Path(destination)
    if path.suffix != BACKUP_SUFFIX:
        path = path.with_name(path.name + BACKUP_SUFFIX)
    return path


def _validate_input(
    filename: Optional[PathLike], passphrase: Optional[str], sleep_ms: Optional[int] = None,
) -> None:
    if not passphrase:
        raise NoPassphraseError()
    if not filename or not str(filename).strip():
        raise NoFilenameError()
    if sleep_ms is not None and sleep_ms < 0:
        raise InvalidSleepError()


class BackupOrchestrator:
    """Top-level coordinator used by the CLI and the web front end.

    Args:
        settings: Configuration (default: PortwardenSettings.from_env()).
        client: Vault tool wrapper (default: BWClient(settings.bw_binary)).
        session_manager: Session handling (default: built from client,
            channel and settings.session).
        codec: Backup codec (default: BackupCodec(settings.kdf_log2_n)).
        channel: Credential channel for unlock/login (default: stdin).
    """

    def __init__(
        self,
        settings: Optional[PortwardenSettings] = None,
        client: Optional[BWClient] = None,
        session_manager: Optional[SessionManager] = None,
        codec: Optional[BackupCodec] = None,
        channel: Optional[CredentialChannel] = None,
    ):
        self.settings = settings or PortwardenSettings.from_env()
        self._client = client or BWClient(self.settings.bw_binary)
        self.sessions = session_manager or SessionManager(
            self._client, channel=channel, env_session=self.settings.session,
        )
        self.codec = codec or BackupCodec(kdf_log2_n=self.settings.kdf_log2_n)

    # ── Backup ───────────────────────────────────────────────────────

    def backup(
        self,
        destination: PathLike,
        passphrase: str,
        sleep_ms: Optional[int] = None,
        no_logout: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Export the vault into an encrypted backup file.

        Returns:
            Metadata dict: path, size_bytes and snapshot counts.

        Raises:
            NoPassphraseError, NoFilenameError, InvalidSleepError: before any
                vault interaction.
            SessionError, VaultCommandError, AttachmentFetchFailed: the run is
                aborted and no file is written.
        """
        _validate_input(destination, passphrase, sleep_ms)
        target = backup_path(destination)
        try:
            session = self._open_session(self.sessions.acquire_session_key, {})
            return self._backup_with_session(session, target, passphrase, sleep_ms, no_logout)
        except PortwardenError as e:
            self._audit_log(EventType.BACKUP_FAILED, f"Backup failed: {type(e).__name__}", {
                "path": str(target),
                "error": str(e),
            }, severity=EventSeverity.ERROR)
            raise

    def backup_with_credentials(
        self,
        destination: PathLike,
        passphrase: str,
        email: str,
        password: str,
        method: Optional[int] = None,
        code: Optional[str] = None,
        sleep_ms: Optional[int] = None,
        no_logout: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Like backup(), but logs in with the given credentials instead of unlock/login prompts."""
        _validate_input(destination, passphrase, sleep_ms)
        target = backup_path(destination)
        try:
            session = self._open_session(
                lambda: self.sessions.login_with_credentials(email, password, method=method, code=code),
                {"email": email},
            )
            return self._backup_with_session(session, target, passphrase, sleep_ms, no_logout)
        except PortwardenError as e:
            self._audit_log(EventType.BACKUP_FAILED, f"Backup failed: {type(e).__name__}", {
                "path": str(target),
                "error": str(e),
            }, severity=EventSeverity.ERROR)
            raise

    def _backup_with_session(
        self,
        session: str,
        target: Path,
        passphrase: str,
        sleep_ms: Optional[int],
        no_logout: Optional[bool],
    ) -> Dict[str, Any]:
        try:
            gateway = VaultExportGateway(self._client, sleep_ms=self._sleep_ms(sleep_ms))
            gateway.sync(session)
            snapshot = gateway.export_full(session)
            encrypted = self.codec.encode(snapshot, passphrase)
            self._write_atomic(target, encrypted)
        finally:
            if not self._no_logout(no_logout):
                self._logout_quietly()

        record = {"path": str(target), "size_bytes": len(encrypted), **snapshot.summary()}
        self._audit_log(EventType.BACKUP_CREATED, f"Backup created: {target.name}", record)
        logger.info("Encrypted backup written to %s", target)
        return record

    # ── Decrypt ──────────────────────────────────────────────────────

    def decrypt_only(self, source: PathLike, passphrase: str) -> VaultSnapshot:
        """Decode a backup file. Purely local: no session, no vault tool.

        Raises:
            NoPassphraseError, NoFilenameError: missing input.
            BackupFormatError: not a portwarden backup.
            WrongPassphraseOrCorrupted: integrity check failed.
        """
        _validate_input(source, passphrase)
        snapshot = self.codec.decode(Path(source).read_bytes(), passphrase)
        self._audit_log(EventType.BACKUP_DECRYPTED, f"Backup decrypted: {Path(source).name}",
                        snapshot.summary())
        return snapshot

    @staticmethod
    def write_plaintext(snapshot: VaultSnapshot, directory: PathLike) -> Path:
        """Write a decrypted snapshot out as plain files; returns the directory."""
        snapshot.write_to(Path(directory))
        return Path(directory)

    # ── Restore ──────────────────────────────────────────────────────

    def restore_from_file(
        self,
        source: PathLike,
        passphrase: str,
        sleep_ms: Optional[int] = None,
        no_logout: Optional[bool] = None,
        skip_existing: Optional[bool] = None,
    ) -> RestoreReport:
        """Restore a backup file into the account the user logs in to.

        Any existing session is logged out first so the user picks the
        target account explicitly.

        Raises:
            NoPassphraseError, NoFilenameError, InvalidSleepError: bad input.
            SessionError: no session could be obtained.
            BackupFormatError, WrongPassphraseOrCorrupted: the file cannot be decoded.
        """
        _validate_input(source, passphrase, sleep_ms)
        try:
            self.sessions.logout()
            session = self._open_session(self.sessions.acquire_session_key, {})
            try:
                snapshot = self.codec.decode(Path(source).read_bytes(), passphrase)
                engine = RestoreEngine(
                    self._client,
                    sleep_ms=self._sleep_ms(sleep_ms),
                    skip_existing=(
                        self.settings.skip_existing if skip_existing is None else skip_existing
                    ),
                )
                report = engine.restore(snapshot, session)
            finally:
                if not self._no_logout(no_logout):
                    self._logout_quietly()
        except PortwardenError as e:
            self._audit_log(EventType.RESTORE_FAILED, f"Restore failed: {type(e).__name__}", {
                "source": str(source),
                "error": str(e),
            }, severity=EventSeverity.ERROR)
            raise

        self._audit_log(
            EventType.RESTORE_COMPLETED,
            f"Restore finished: {Path(source).name}",
            {"source": str(source), "ok": report.ok, "counts": report.counts()},
            severity=EventSeverity.INFO if report.ok else EventSeverity.WARNING,
        )
        return report

    # ── Helpers ──────────────────────────────────────────────────────

    def _open_session(self, acquire: Callable[[], str], details: dict) -> str:
        try:
            session = acquire()
        except PortwardenError as e:
            self._audit_log(EventType.SESSION_FAILED, f"Vault session failed: {type(e).__name__}", {
                **details,
                "error": str(e),
            }, severity=EventSeverity.ERROR)
            raise
        self._audit_log(EventType.SESSION_ACQUIRED, "Vault session acquired", details)
        return session

    def _sleep_ms(self, sleep_ms: Optional[int]) -> int:
        return self.settings.sleep_milliseconds if sleep_ms is None else sleep_ms

    def _no_logout(self, no_logout: Optional[bool]) -> bool:
        return self.settings.no_logout if no_logout is None else no_logout

    def _logout_quietly(self) -> None:
        """Logout after the real work; a failure here must not mask the result."""
        try:
            self.sessions.logout()
            self._audit_log(EventType.SESSION_LOGOUT, "Logged out of the vault", {})
        except PortwardenError as e:
            logger.warning("Logout failed: %s", e)

    @staticmethod
    def _write_atomic(target: Path, data: bytes) -> None:
        """Write via a temp file in the same directory, then rename over target."""
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @staticmethod
    def _audit_log(
        event_type: EventType,
        message: str,
        details: dict,
        severity: EventSeverity = EventSeverity.INFO,
    ):
        """Best-effort audit logging."""
        try:
            log_backup_event(event_type, severity, message, details=details)
        except Exception:
            logger.warning("Audit log failed: %s", message, exc_info=True)
