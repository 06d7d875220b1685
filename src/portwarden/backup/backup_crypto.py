"""Backup encoding: vault snapshot -> deterministic ZIP -> scrypt + AES-256-GCM.

File format (``.portwarden``)::

    header   magic "PWDN" | version u8 | kdf id u8 | cipher id u8
             | log2(n) u8 | r u8 | p u8 | salt (32) | nonce (12)
    body     AES-256-GCM ciphertext of the container, tag (16) appended

The whole header is bound to the ciphertext as associated data, so
tampering with KDF parameters, salt or nonce fails the tag check just like
a wrong passphrase does.

Container (ZIP, fixed timestamps, entries in a fixed order)::

    manifest.json                          format version, counts, attachment index
    items.json                             items exactly as the vault lists them
    folders.json
    attachments/<item_id>/<attachment_id>  raw attachment bytes
"""

import hashlib
import io
import json
import logging
import os
import struct
import zipfile
from dataclasses import dataclass
from typing import Any, Dict, List

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..core.config import DEFAULT_KDF_LOG2_N
from ..exceptions import BackupFormatError, WrongPassphraseOrCorrupted
from ..models import AttachmentBlob, VaultSnapshot

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".portwarden"

MAGIC = b"PWDN"
FORMAT_VERSION = 1
KDF_SCRYPT = 1
CIPHER_AES_256_GCM = 1

KEY_LENGTH = 32    # 256 bits for AES-256
SALT_LENGTH = 32   # 256-bit salt
NONCE_LENGTH = 12  # 96-bit nonce for GCM
TAG_LENGTH = 16

_FIXED_HEADER = struct.Struct("!4sBBBBBB")
HEADER_SIZE = _FIXED_HEADER.size + SALT_LENGTH + NONCE_LENGTH

# Accepted scrypt parameters when reading a file; bounds memory and CPU
# spent on an untrusted header.
_LOG2_N_RANGE = range(10, 21)
_R_RANGE = range(1, 33)
_P_RANGE = range(1, 17)

_ZIP_DATE = (1980, 1, 1, 0, 0, 0)
_MANIFEST_VERSION = 1


@dataclass(frozen=True)
class BackupHeader:
    version: int
    kdf: int
    cipher: int
    log2_n: int
    r: int
    p: int
    salt: bytes
    nonce: bytes

    def pack(self) -> bytes:
        return _FIXED_HEADER.pack(
            MAGIC, self.version, self.kdf, self.cipher, self.log2_n, self.r, self.p,
        ) + self.salt + self.nonce

    @classmethod
    def unpack(cls, blob: bytes) -> "BackupHeader":
        """Parse and sanity-check the header at the start of blob.

        Raises:
            BackupFormatError: not a portwarden file, unsupported version or
                algorithms, or KDF parameters outside accepted bounds.
        """
        if len(blob) < HEADER_SIZE + TAG_LENGTH:
            raise BackupFormatError("File too short to be a portwarden backup.")
        magic, version, kdf, cipher, log2_n, r, p = _FIXED_HEADER.unpack_from(blob)
        if magic != MAGIC:
            raise BackupFormatError("Not a portwarden backup file.")
        if version != FORMAT_VERSION:
            raise BackupFormatError(f"Unsupported backup format version: {version}")
        if kdf != KDF_SCRYPT or cipher != CIPHER_AES_256_GCM:
            raise BackupFormatError(f"Unsupported algorithms (kdf={kdf}, cipher={cipher})")
        if log2_n not in _LOG2_N_RANGE or r not in _R_RANGE or p not in _P_RANGE:
            raise BackupFormatError("Key derivation parameters out of range.")
        offset = _FIXED_HEADER.size
        salt = blob[offset:offset + SALT_LENGTH]
        nonce = blob[offset + SALT_LENGTH:HEADER_SIZE]
        return cls(version, kdf, cipher, log2_n, r, p, salt, nonce)


def derive_key(passphrase: str, salt: bytes, log2_n: int, r: int, p: int) -> bytes:
    """Derive a 256-bit key from passphrase + salt via scrypt."""
    kdf = Scrypt(
        salt=salt,
        length=KEY_LENGTH,
        n=2 ** log2_n,
        r=r,
        p=p,
        backend=default_backend(),
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _attachment_path(item_id: str, attachment_id: str) -> str:
    return f"attachments/{item_id}/{attachment_id}"


class BackupCodec:
    """Encode/decode vault snapshots to/from passphrase-encrypted bytes.

    Args:
        kdf_log2_n: scrypt CPU/memory cost as a power of two.
        kdf_r: scrypt block size.
        kdf_p: scrypt parallelization.
    """

    def __init__(self, kdf_log2_n: int = DEFAULT_KDF_LOG2_N, kdf_r: int = 8, kdf_p: int = 1):
        if kdf_log2_n not in _LOG2_N_RANGE or kdf_r not in _R_RANGE or kdf_p not in _P_RANGE:
            raise ValueError("scrypt parameters out of range")
        self.kdf_log2_n = kdf_log2_n
        self.kdf_r = kdf_r
        self.kdf_p = kdf_p

    # ── Encrypt / decrypt ────────────────────────────────────────────

    def encrypt_bytes(self, data: bytes, passphrase: str) -> bytes:
        """Encrypt data with a fresh salt and nonce. Returns header + ciphertext + tag."""
        header = BackupHeader(
            version=FORMAT_VERSION,
            kdf=KDF_SCRYPT,
            cipher=CIPHER_AES_256_GCM,
            log2_n=self.kdf_log2_n,
            r=self.kdf_r,
            p=self.kdf_p,
            salt=os.urandom(SALT_LENGTH),
            nonce=os.urandom(NONCE_LENGTH),
        )
        header_bytes = header.pack()
        key = derive_key(passphrase, header.salt, header.log2_n, header.r, header.p)
        return header_bytes + AESGCM(key).encrypt(header.nonce, data, header_bytes)

    @staticmethod
    def decrypt_bytes(blob: bytes, passphrase: str) -> bytes:
        """Verify and decrypt a backup blob. No plaintext is returned unless the tag matches.

        Raises:
            BackupFormatError: Header unreadable.
            WrongPassphraseOrCorrupted: Authentication tag mismatch.
        """
        header = BackupHeader.unpack(blob)
        key = derive_key(passphrase, header.salt, header.log2_n, header.r, header.p)
        try:
            return AESGCM(key).decrypt(header.nonce, blob[HEADER_SIZE:], blob[:HEADER_SIZE])
        except InvalidTag:
            raise WrongPassphraseOrCorrupted() from None

    # ── Container ────────────────────────────────────────────────────

    @staticmethod
    def pack_snapshot(snapshot: VaultSnapshot) -> bytes:
        """Serialize a validated snapshot into the deterministic ZIP container."""
        snapshot.validate()
        index: List[Dict[str, Any]] = []
        blobs = sorted(snapshot.attachments.values(), key=lambda b: b.key)
        for blob in blobs:
            index.append({
                "item_id": blob.item_id,
                "attachment_id": blob.attachment_id,
                "file_name": blob.file_name,
                "size": blob.size,
                "sha256": hashlib.sha256(blob.data).hexdigest(),
                "path": _attachment_path(blob.item_id, blob.attachment_id),
            })
        manifest = {
            "version": _MANIFEST_VERSION,
            "created_at": snapshot.created_at,
            "item_count": len(snapshot.items),
            "folder_count": len(snapshot.folders),
            "attachments": index,
        }

        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
            entries = [
                ("manifest.json", _canonical_json(manifest)),
                ("items.json", _canonical_json(snapshot.items)),
                ("folders.json", _canonical_json(snapshot.folders)),
            ]
            entries += [
                (_attachment_path(blob.item_id, blob.attachment_id), blob.data)
                for blob in blobs
            ]
            for name, data in entries:
                info = zipfile.ZipInfo(name, date_time=_ZIP_DATE)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o600 << 16
                zf.writestr(info, data)
        return buf.getvalue()

    @staticmethod
    def unpack_snapshot(container: bytes) -> VaultSnapshot:
        """Rebuild a snapshot from container bytes, checking every attachment digest.

        Raises:
            BackupFormatError: Missing entries, bad JSON or digest mismatch.
        """
        try:
            with zipfile.ZipFile(io.BytesIO(container), "r") as zf:
                manifest = json.loads(zf.read("manifest.json"))
                if manifest.get("version") != _MANIFEST_VERSION:
                    raise BackupFormatError(
                        f"Unsupported manifest version: {manifest.get('version')}"
                    )
                items = json.loads(zf.read("items.json"))
                folders = json.loads(zf.read("folders.json"))
                snapshot = VaultSnapshot(
                    items=items, folders=folders, created_at=manifest["created_at"],
                )
                for entry in manifest["attachments"]:
                    data = zf.read(entry["path"])
                    if hashlib.sha256(data).hexdigest() != entry["sha256"]:
                        raise BackupFormatError(
                            f"Checksum mismatch for attachment {entry['attachment_id']}"
                        )
                    snapshot.add_attachment(AttachmentBlob(
                        item_id=entry["item_id"],
                        attachment_id=entry["attachment_id"],
                        file_name=entry["file_name"],
                        size=entry["size"],
                        data=data,
                    ))
        except (KeyError, TypeError, AttributeError, ValueError, zipfile.BadZipFile) as e:
            raise BackupFormatError(f"Corrupt backup container: {e}") from e
        return snapshot

    # ── Public API ───────────────────────────────────────────────────

    def encode(self, snapshot: VaultSnapshot, passphrase: str) -> bytes:
        """Snapshot -> encrypted backup bytes.

        Raises:
            IncompleteSnapshotError: an attachment reference has no fetched blob.
        """
        container = self.pack_snapshot(snapshot)
        blob = self.encrypt_bytes(container, passphrase)
        logger.debug("Encoded %d byte container into %d byte backup", len(container), len(blob))
        return blob

    def decode(self, blob: bytes, passphrase: str) -> VaultSnapshot:
        """Encrypted backup bytes -> snapshot.

        Raises:
            BackupFormatError: not a readable portwarden backup.
            WrongPassphraseOrCorrupted: integrity check failed.
        """
        return self.unpack_snapshot(self.decrypt_bytes(blob, passphrase))
