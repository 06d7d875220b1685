"""Backup API routes: encrypted export with login credentials, and decrypt.

The web front end cannot forward a terminal to ``bw login``, so the encrypt
endpoint logs in non-interactively with the credentials in the request.
Backups are written under the configured backup directory.
"""

import base64
import binascii
import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..backup.orchestrator import BackupOrchestrator
from ..bw.client import NullChannel
from ..exceptions import PortwardenError
from .security import verify_api_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups", tags=["backups"])

_SAFE_PREFIX = re.compile(r"^[A-Za-z0-9._-]+$")

# ── Singleton ────────────────────────────────────────────────────────

_orchestrator: Optional[BackupOrchestrator] = None


def get_orchestrator() -> BackupOrchestrator:
    """Lazy singleton, created on first use."""
    global _orchestrator
    if _orchestrator is None:
        # No terminal behind the web server: never wait on stdin
        _orchestrator = BackupOrchestrator(channel=NullChannel())
    return _orchestrator


# ── Pydantic Models ──────────────────────────────────────────────────


class EncryptBackupRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    passphrase: str = Field(..., min_length=1)
    file_name_prefix: str = Field(..., min_length=1, max_length=100)
    method: Optional[int] = Field(None, ge=0)
    code: Optional[str] = None


class DecryptBackupRequest(BaseModel):
    passphrase: str = Field(..., min_length=1)
    backup: str = Field(..., min_length=1, description="base64-encoded .portwarden file")


# ── Routes ───────────────────────────────────────────────────────────


@router.post("/encrypt")
async def encrypt_backup(
    body: EncryptBackupRequest,
    _user: str = Depends(verify_api_token),
):
    """Log in with the given credentials and write an encrypted backup."""
    if not _SAFE_PREFIX.match(body.file_name_prefix):
        raise HTTPException(status_code=400, detail="Invalid file name prefix.")
    orch = get_orchestrator()
    destination = orch.settings.backup_dir / body.file_name_prefix
    try:
        result = orch.backup_with_credentials(
            destination,
            body.passphrase,
            email=body.email,
            password=body.password,
            method=body.method,
            code=body.code,
        )
    except PortwardenError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result


@router.post("/decrypt")
async def decrypt_backup(
    body: DecryptBackupRequest,
    _user: str = Depends(verify_api_token),
):
    """Decrypt an uploaded backup; returns items, folders and attachment metadata."""
    try:
        blob = base64.b64decode(body.backup, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Backup must be base64-encoded.")
    orch = get_orchestrator()
    try:
        snapshot = orch.codec.decode(blob, body.passphrase)
    except PortwardenError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        **snapshot.summary(),
        "items": snapshot.items,
        "folders": snapshot.folders,
        "attachments": [
            {
                "item_id": att.item_id,
                "attachment_id": att.attachment_id,
                "file_name": att.file_name,
                "size": att.size,
            }
            for att in snapshot.attachments.values()
        ],
    }
