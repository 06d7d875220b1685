# Portwarden - Main Package
#
# Encrypted, offline backups of a Bitwarden vault, driven through the
# official `bw` command line tool: export, decrypt and restore.

__version__ = "1.0.0"
__author__ = "Portwarden Team"
__description__ = "Encrypted backup and restore for Bitwarden vaults"

from .backup import BackupCodec, BackupOrchestrator, RestoreEngine
from .bw import SessionKeyExtractor, SessionManager, VaultExportGateway
from .models import AttachmentBlob, RestoreReport, VaultSnapshot

__all__ = [
    "__version__",
    "AttachmentBlob",
    "BackupCodec",
    "BackupOrchestrator",
    "RestoreEngine",
    "RestoreReport",
    "SessionKeyExtractor",
    "SessionManager",
    "VaultExportGateway",
    "VaultSnapshot",
]
