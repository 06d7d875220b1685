"""Portwarden - encrypted backup, decrypt and restore."""

from .backup_crypto import BACKUP_SUFFIX, BackupCodec
from .orchestrator import BackupOrchestrator
from .restore_engine import RestoreEngine

__all__ = ["BACKUP_SUFFIX", "BackupCodec", "BackupOrchestrator", "RestoreEngine"]
