"""
Portwarden Exception Classes
"""


class PortwardenError(Exception):
    """Base exception for portwarden operations"""
    pass


class NoPassphraseError(PortwardenError):
    """Raised when no passphrase was provided"""

    def __init__(self, message: str = "no passphrase provided"):
        super().__init__(message)


class NoFilenameError(PortwardenError):
    """Raised when no backup filename was provided"""

    def __init__(self, message: str = "no filename provided"):
        super().__init__(message)


class InvalidSleepError(PortwardenError):
    """Raised when the delay between attachment requests is negative"""

    def __init__(self, message: str = "sleep milliseconds must not be negative"):
        super().__init__(message)


# ── Session acquisition ──────────────────────────────────────────────


class SessionError(PortwardenError):
    """Raised when a vault session cannot be obtained"""
    pass


class NotLoggedInError(SessionError):
    """Raised when the vault tool reports that nobody is logged in"""
    pass


class VaultLockedError(SessionError):
    """Raised when the vault tool reports a locked vault"""
    pass


class InvalidMasterPasswordError(SessionError):
    """Raised when the vault tool rejects the master password"""
    pass


class UnrecognizedOutputError(SessionError):
    """Raised when no session token or known failure can be found in the output"""
    pass


class VaultToolUnavailableError(PortwardenError):
    """Raised when the vault command line tool cannot be launched"""
    pass


class VaultCommandError(PortwardenError):
    """Raised when a vault tool command exits with a failure status"""

    def __init__(self, action: str, returncode: int, stderr: str = ""):
        self.action = action
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"{action} failed: {detail}")


# ── Backup / decode ──────────────────────────────────────────────────


class AttachmentFetchFailed(PortwardenError):
    """Raised when an attachment cannot be downloaded during backup"""

    def __init__(self, item_id: str, attachment_id: str, reason: str):
        self.item_id = item_id
        self.attachment_id = attachment_id
        super().__init__(
            f"attachment {attachment_id} of item {item_id} could not be fetched: {reason}"
        )


class IncompleteSnapshotError(PortwardenError):
    """Raised when a snapshot still references attachments that were not fetched"""
    pass


class BackupFormatError(PortwardenError):
    """Raised when a backup file is not a readable portwarden container"""
    pass


class WrongPassphraseOrCorrupted(PortwardenError):
    """Raised when the backup integrity check fails.

    A wrong passphrase and a damaged file are indistinguishable from the
    authentication tag alone, so both surface as this one error.
    """

    def __init__(self, message: str = "wrong passphrase or corrupted backup file"):
        super().__init__(message)
