"""Replay a decrypted snapshot into a vault account.

Restore is partial-failure tolerant: a folder, item or attachment that the
vault tool refuses, including a "locked" or "not logged in" answer to a
single create, is recorded in the RestoreReport and the run moves on.

Order: folders first (so items can be filed), then items in snapshot
order, each item's attachments immediately after the item.
"""

import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Set, Tuple

from ..bw.client import BWClient
from ..bw.throttle import Throttle
from ..core.config import DEFAULT_SLEEP_MILLISECONDS
from ..exceptions import PortwardenError
from ..models import RestoreReport, RestoreStatus, VaultSnapshot, safe_component

logger = logging.getLogger(__name__)

# Server-assigned or account-bound fields dropped before re-creating an item.
_SERVER_FIELDS = (
    "id",
    "object",
    "organizationId",
    "collectionIds",
    "revisionDate",
    "creationDate",
    "deletedDate",
    "attachments",
)

ItemIdentity = Tuple[Any, Optional[str], Optional[str]]


def item_identity(item: Dict[str, Any]) -> ItemIdentity:
    """(type, name, login username): what makes two items 'the same' for skip_existing."""
    login = item.get("login") or {}
    return (item.get("type"), item.get("name"), login.get("username"))


def prepare_item(item: Dict[str, Any], folder_map: Dict[str, Optional[str]]) -> Dict[str, Any]:
    """Copy of item ready for ``bw create item``: server fields stripped, folder remapped."""
    payload = {k: v for k, v in item.items() if k not in _SERVER_FIELDS}
    folder_id = item.get("folderId")
    payload["folderId"] = folder_map.get(folder_id) if folder_id else None
    return payload


class RestoreEngine:
    """Recreate folders, items and attachments through the vault tool.

    Args:
        client: Vault tool wrapper.
        sleep_ms: Delay between successive attachment uploads.
        skip_existing: Skip items whose identity already exists in the target vault.
        throttle: Pre-built throttle (overrides sleep_ms).
    """

    def __init__(
        self,
        client: BWClient,
        sleep_ms: int = DEFAULT_SLEEP_MILLISECONDS,
        skip_existing: bool = False,
        throttle: Optional[Throttle] = None,
    ):
        self._client = client
        self._throttle = throttle or Throttle(sleep_ms)
        self.skip_existing = skip_existing

    def restore(self, snapshot: VaultSnapshot, session: str) -> RestoreReport:
        """Replay snapshot into the vault behind session.

        Raises:
            PortwardenError: only from the skip_existing listing, before anything is created.
        """
        report = RestoreReport()
        existing: Set[ItemIdentity] = set()
        if self.skip_existing:
            existing = {item_identity(i) for i in self._client.list_items(session)}
            logger.info("Target vault already holds %d item(s)", len(existing))

        folder_map = self._restore_folders(snapshot, session, report)

        with tempfile.TemporaryDirectory(prefix="portwarden_restore_") as tmp:
            for item in snapshot.items:
                self._restore_item(snapshot, item, session, folder_map, existing, report, Path(tmp))

        counts = report.counts()
        logger.info(
            "Restore finished: items %s, attachments %s, folders %s",
            counts["item"], counts["attachment"], counts["folder"],
        )
        return report

    # ── Folders ──────────────────────────────────────────────────────

    def _restore_folders(
        self, snapshot: VaultSnapshot, session: str, report: RestoreReport
    ) -> Dict[str, Optional[str]]:
        folder_map: Dict[str, Optional[str]] = {}
        for folder in snapshot.folders:
            folder_id = folder.get("id")
            name = folder.get("name") or ""
            if not folder_id:
                # "No Folder" pseudo-entry
                continue
            try:
                created = self._client.create_folder(session, {"name": name})
            except PortwardenError as e:
                logger.warning("Folder %s could not be created: %s", folder_id, e)
                report.record("folder", folder_id, name, RestoreStatus.FAILED, error=str(e))
                folder_map[folder_id] = None
                continue
            folder_map[folder_id] = created.get("id")
            report.record("folder", folder_id, name, RestoreStatus.CREATED, new_id=created.get("id"))
        return folder_map

    # ── Items and attachments ────────────────────────────────────────

    def _restore_item(
        self,
        snapshot: VaultSnapshot,
        item: Dict[str, Any],
        session: str,
        folder_map: Dict[str, Optional[str]],
        existing: Set[ItemIdentity],
        report: RestoreReport,
        tmp_dir: Path,
    ) -> None:
        item_id = item.get("id", "")
        name = item.get("name") or ""

        identity = item_identity(item)
        if identity in existing:
            report.record("item", item_id, name, RestoreStatus.SKIPPED, error="already exists")
            return

        try:
            created = self._client.create_item(session, prepare_item(item, folder_map))
        except PortwardenError as e:
            logger.warning("Item %s could not be created: %s", item_id, e)
            report.record("item", item_id, name, RestoreStatus.FAILED, error=str(e))
            return

        new_id = created.get("id") if isinstance(created, dict) else None
        report.record("item", item_id, name, RestoreStatus.CREATED, new_id=new_id)

        for attachment in item.get("attachments") or []:
            if not new_id:
                report.record(
                    "attachment", attachment.get("id", ""), attachment.get("fileName") or "",
                    RestoreStatus.FAILED, error="created item has no id", parent_id=item_id,
                )
                continue
            self._restore_attachment(snapshot, item_id, new_id, attachment, session, report, tmp_dir)

    def _restore_attachment(
        self,
        snapshot: VaultSnapshot,
        item_id: str,
        new_item_id: str,
        attachment: Dict[str, Any],
        session: str,
        report: RestoreReport,
        tmp_dir: Path,
    ) -> None:
        attachment_id = attachment.get("id", "")
        blob = snapshot.attachment_for(item_id, attachment_id)
        if blob is None:
            report.record(
                "attachment", attachment_id, attachment.get("fileName") or "",
                RestoreStatus.FAILED, error="attachment bytes missing from backup",
                parent_id=item_id,
            )
            return

        # bw names the uploaded attachment after the file, so keep the original name
        upload_dir = tmp_dir / safe_component(attachment_id, "attachment")
        upload_path = upload_dir / safe_component(blob.file_name, upload_dir.name)
        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
            upload_path.write_bytes(blob.data)
            self._throttle.wait()
            self._client.create_attachment(session, new_item_id, str(upload_path))
        except (PortwardenError, OSError) as e:
            logger.warning("Attachment %s of item %s could not be uploaded: %s", attachment_id, item_id, e)
            report.record(
                "attachment", attachment_id, blob.file_name, RestoreStatus.FAILED,
                error=str(e), parent_id=item_id,
            )
            return
        finally:
            upload_path.unlink(missing_ok=True)

        report.record(
            "attachment", attachment_id, blob.file_name, RestoreStatus.CREATED,
            new_id=new_item_id, parent_id=item_id,
        )
