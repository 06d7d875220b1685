"""In-memory vault snapshot, attachment blobs and the restore report."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .exceptions import IncompleteSnapshotError

logger = logging.getLogger(__name__)


def safe_component(value: str, fallback: str) -> str:
    """Final path component of a vault-supplied name, or fallback if nothing usable is left."""
    name = Path(value).name
    return fallback if name in ("", ".", "..") else name


AttachmentKey = Tuple[str, str]  # (item_id, attachment_id)


@dataclass(frozen=True)
class AttachmentBlob:
    """Raw bytes of one attachment plus what identifies it."""
    item_id: str
    attachment_id: str
    file_name: str
    size: int
    data: bytes

    @property
    def key(self) -> AttachmentKey:
        return (self.item_id, self.attachment_id)


@dataclass
class VaultSnapshot:
    """A vault's contents at one point in time.

    ``items`` and ``folders`` are the JSON objects exactly as the vault tool
    lists them, in the tool's order. Attachment bytes are held separately
    in ``attachments``, keyed by (item_id, attachment_id).
    """
    items: List[Dict[str, Any]] = field(default_factory=list)
    folders: List[Dict[str, Any]] = field(default_factory=list)
    attachments: Dict[AttachmentKey, AttachmentBlob] = field(default_factory=dict)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def attachment_refs(self) -> Iterator[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """Yield (item, attachment metadata) for every attachment reference, in order."""
        for item in self.items:
            for attachment in item.get("attachments") or []:
                yield item, attachment

    def unresolved_attachments(self) -> List[AttachmentKey]:
        """Attachment references with no fetched blob."""
        return [
            (item["id"], attachment["id"])
            for item, attachment in self.attachment_refs()
            if (item["id"], attachment["id"]) not in self.attachments
        ]

    def validate(self) -> None:
        """Raise IncompleteSnapshotError unless every reference resolves to a blob."""
        missing = self.unresolved_attachments()
        if missing:
            raise IncompleteSnapshotError(
                f"{len(missing)} attachment(s) referenced but not fetched: "
                + ", ".join(f"{item_id}/{att_id}" for item_id, att_id in missing[:5])
            )

    def add_attachment(self, blob: AttachmentBlob) -> None:
        self.attachments[blob.key] = blob

    def attachment_for(self, item_id: str, attachment_id: str) -> Optional[AttachmentBlob]:
        return self.attachments.get((item_id, attachment_id))

    def summary(self) -> Dict[str, Any]:
        return {
            "created_at": self.created_at,
            "item_count": len(self.items),
            "folder_count": len(self.folders),
            "attachment_count": len(self.attachments),
        }

    def write_to(self, directory: Path) -> List[Path]:
        """Write a plaintext copy: items.json, folders.json and attachment files.

        Attachments land in ``attachments/<item_id>/<file_name>``.

        Returns:
            Paths of the files written.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = []

        items_path = directory / "items.json"
        items_path.write_text(json.dumps(self.items, indent=2), encoding="utf-8")
        written.append(items_path)

        folders_path = directory / "folders.json"
        folders_path.write_text(json.dumps(self.folders, indent=2), encoding="utf-8")
        written.append(folders_path)

        for blob in self.attachments.values():
            # Ids and file names come from the vault; keep only the final component
            item_dir = directory / "attachments" / safe_component(blob.item_id, "item")
            item_dir.mkdir(parents=True, exist_ok=True)
            attachment_name = safe_component(blob.attachment_id, "attachment")
            target = item_dir / safe_component(blob.file_name, attachment_name)
            if target.exists():
                target = item_dir / f"{attachment_name}_{target.name}"
            target.write_bytes(blob.data)
            written.append(target)

        logger.info("Wrote plaintext export (%d files) to %s", len(written), directory)
        return written


# ── Restore report ──────────────────────────────────────────────────


class RestoreStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RestoreOutcome:
    """What happened to one folder, item or attachment during restore."""
    kind: str  # "folder" | "item" | "attachment"
    source_id: str
    name: str
    status: RestoreStatus
    new_id: Optional[str] = None
    error: Optional[str] = None
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "source_id": self.source_id,
            "name": self.name,
            "status": self.status.value,
            "new_id": self.new_id,
            "error": self.error,
            "parent_id": self.parent_id,
        }


@dataclass
class RestoreReport:
    """Tally of per-folder, per-item and per-attachment restore outcomes."""
    outcomes: List[RestoreOutcome] = field(default_factory=list)

    def record(
        self,
        kind: str,
        source_id: str,
        name: str,
        status: RestoreStatus,
        new_id: Optional[str] = None,
        error: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> RestoreOutcome:
        outcome = RestoreOutcome(kind, source_id, name, status, new_id, error, parent_id)
        self.outcomes.append(outcome)
        return outcome

    def count(self, kind: str, status: RestoreStatus) -> int:
        return sum(1 for o in self.outcomes if o.kind == kind and o.status == status)

    @property
    def failed(self) -> List[RestoreOutcome]:
        return [o for o in self.outcomes if o.status == RestoreStatus.FAILED]

    @property
    def ok(self) -> bool:
        """True when nothing failed (skips are fine)."""
        return not self.failed

    def counts(self) -> Dict[str, Dict[str, int]]:
        return {
            kind: {status.value: self.count(kind, status) for status in RestoreStatus}
            for kind in ("folder", "item", "attachment")
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "counts": self.counts(),
            "failed": [o.to_dict() for o in self.failed],
            "outcomes": [o.to_dict() for o in self.outcomes],
        }
