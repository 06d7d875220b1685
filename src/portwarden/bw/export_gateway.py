"""
VaultExportGateway: dump a vault (items, folders, attachment bytes).

Attachments are downloaded one at a time with a fixed delay between
requests. Unlike restore, backup does not tolerate partial results: a
single failed attachment aborts the export, because a backup that silently
lacks files is worse than no backup.
"""

import logging
from typing import Any, Dict, Optional

from ..models import AttachmentBlob, VaultSnapshot
from ..core.config import DEFAULT_SLEEP_MILLISECONDS
from ..exceptions import AttachmentFetchFailed, PortwardenError, SessionError
from .client import BWClient
from .throttle import Throttle

logger = logging.getLogger(__name__)


def _declared_size(attachment: Dict[str, Any]) -> Optional[int]:
    """The attachment size the vault reports (a string in bw's JSON), if parseable."""
    try:
        return int(attachment.get("size"))
    except (TypeError, ValueError):
        return None


class VaultExportGateway:
    """Export a vault through the vault tool.

    Args:
        client: Vault tool wrapper.
        sleep_ms: Delay between successive attachment downloads.
        throttle: Pre-built throttle (overrides sleep_ms; tests inject a fake clock).
    """

    def __init__(
        self,
        client: BWClient,
        sleep_ms: int = DEFAULT_SLEEP_MILLISECONDS,
        throttle: Optional[Throttle] = None,
    ):
        self._client = client
        self._throttle = throttle or Throttle(sleep_ms)

    def sync(self, session: str) -> None:
        """Pull the latest vault state from the server into the tool's cache."""
        self._client.sync(session)
        logger.info("Vault synced")

    def export_snapshot(self, session: str) -> VaultSnapshot:
        """List items and folders. Attachment bytes are not fetched."""
        items = self._client.list_items(session)
        folders = self._client.list_folders(session)
        snapshot = VaultSnapshot(items=items, folders=folders)
        logger.info(
            "Exported %d item(s), %d folder(s), %d attachment reference(s)",
            len(items), len(folders), sum(1 for _ in snapshot.attachment_refs()),
        )
        return snapshot

    def fetch_attachment(
        self, session: str, item_id: str, attachment: Dict[str, Any]
    ) -> AttachmentBlob:
        """Download one attachment.

        Raises:
            AttachmentFetchFailed: the download failed or its size does not
                match the size the vault reports.
            SessionError: the session stopped being valid.
        """
        attachment_id = attachment["id"]
        try:
            data = self._client.get_attachment(session, item_id, attachment_id)
        except SessionError:
            raise
        except PortwardenError as e:
            raise AttachmentFetchFailed(item_id, attachment_id, str(e)) from e

        expected = _declared_size(attachment)
        if expected is not None and expected != len(data):
            raise AttachmentFetchFailed(
                item_id, attachment_id,
                f"expected {expected} bytes, received {len(data)}",
            )
        return AttachmentBlob(
            item_id=item_id,
            attachment_id=attachment_id,
            file_name=attachment.get("fileName") or attachment_id,
            size=len(data),
            data=data,
        )

    def fetch_attachments(self, session: str, snapshot: VaultSnapshot) -> VaultSnapshot:
        """Fetch every referenced attachment into snapshot, sequentially and throttled."""
        fetched = 0
        for item, attachment in snapshot.attachment_refs():
            if snapshot.attachment_for(item["id"], attachment["id"]) is not None:
                continue
            self._throttle.wait()
            blob = self.fetch_attachment(session, item["id"], attachment)
            snapshot.add_attachment(blob)
            fetched += 1
            logger.debug("Fetched attachment %s of item %s", blob.attachment_id, blob.item_id)
        logger.info("Fetched %d attachment(s)", fetched)
        return snapshot

    def export_full(self, session: str) -> VaultSnapshot:
        """Items, folders and every attachment; validated before returning."""
        snapshot = self.fetch_attachments(session, self.export_snapshot(session))
        snapshot.validate()
        return snapshot
