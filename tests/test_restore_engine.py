"""Tests for RestoreEngine: replay order, partial failure tolerance, dedup."""

import pytest

from conftest import SESSION, failed
from portwarden.backup.restore_engine import RestoreEngine, item_identity, prepare_item
from portwarden.bw.throttle import Throttle
from portwarden.models import AttachmentBlob, RestoreStatus, VaultSnapshot


@pytest.fixture
def snapshot(sample_vault):
    snap = VaultSnapshot(items=sample_vault["items"], folders=sample_vault["folders"])
    for item in sample_vault["items"]:
        for att in item.get("attachments") or []:
            data = sample_vault["blobs"][(item["id"], att["id"])]
            snap.add_attachment(AttachmentBlob(item["id"], att["id"], att["fileName"], len(data), data))
    return snap


def _engine(bw, fake_clock, **kwargs):
    return RestoreEngine(bw, throttle=Throttle(300, clock=fake_clock, sleep=fake_clock.sleep), **kwargs)


class TestPrepareItem:

    def test_server_fields_stripped(self, sample_vault):
        payload = prepare_item(sample_vault["items"][0], {"folder-1": "new-folder-1"})
        for key in ("id", "object", "organizationId", "collectionIds", "revisionDate", "attachments"):
            assert key not in payload
        assert payload["name"] == "GitHub"
        assert payload["login"]["password"] == "hunter2"

    def test_folder_remapped(self, sample_vault):
        payload = prepare_item(sample_vault["items"][0], {"folder-1": "new-folder-1"})
        assert payload["folderId"] == "new-folder-1"

    def test_unknown_folder_dropped(self, sample_vault):
        payload = prepare_item(sample_vault["items"][0], {})
        assert payload["folderId"] is None

    def test_identity(self, sample_vault):
        assert item_identity(sample_vault["items"][0]) == (1, "GitHub", "alice")
        assert item_identity(sample_vault["items"][1]) == (2, "Server notes", None)


class TestRestore:

    def test_everything_created(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert report.ok
        assert report.counts() == {
            "folder": {"created": 1, "skipped": 0, "failed": 0},
            "item": {"created": 3, "skipped": 0, "failed": 0},
            "attachment": {"created": 3, "skipped": 0, "failed": 0},
        }
        assert [i["name"] for i in bw.created_items] == ["GitHub", "Server notes", "Bank"]
        assert bw.created_items[0]["folderId"] == "new-folder-1"

    def test_order_folders_then_items_with_attachments(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        _engine(bw, fake_clock).restore(snapshot, SESSION)
        kinds = [tuple(c[:2]) for c in bw.commands()]
        assert kinds == [
            ("create", "folder"),
            ("create", "item"),
            ("create", "attachment"),
            ("create", "item"),
            ("create", "item"),
            ("create", "attachment"),
            ("create", "attachment"),
        ]

    def test_attachments_uploaded_to_new_item(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert bw.uploaded == [
            ("new-item-1", "recovery-codes.txt", b"0123456789"),
            ("new-item-3", "statement.pdf", b"%PDF-1"),
            ("new-item-3", "card.png", b"\x89PNG"),
        ]

    def test_uploads_are_spaced(self, make_bw, snapshot, fake_clock):
        _engine(make_bw(), fake_clock).restore(snapshot, SESSION)
        assert len(fake_clock.sleeps) == 2

    def test_item_failure_does_not_stop_restore(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.reject_item_names.add("Server notes")
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert not report.ok
        assert report.count("item", RestoreStatus.CREATED) == 2
        assert report.count("item", RestoreStatus.FAILED) == 1
        failure = report.failed[0]
        assert failure.source_id == "item-2"
        assert "item rejected" in failure.error
        assert [i["name"] for i in bw.created_items] == ["GitHub", "Bank"]

    def test_attachment_failure_recorded(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.reject_attachment_files.add("statement.pdf")
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert report.count("attachment", RestoreStatus.FAILED) == 1
        assert report.count("attachment", RestoreStatus.CREATED) == 2
        assert report.failed[0].parent_id == "item-3"

    def test_missing_blob_recorded(self, make_bw, snapshot, fake_clock):
        del snapshot.attachments[("item-1", "att-1")]
        report = _engine(make_bw(), fake_clock).restore(snapshot, SESSION)
        assert report.failed[0].source_id == "att-1"
        assert "missing" in report.failed[0].error

    def test_locked_vault_on_item_recorded_and_restore_continues(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.item_failures["Server notes"] = failed(stderr="Vault is locked.")
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert not report.ok
        assert [(o.kind, o.source_id) for o in report.failed] == [("item", "item-2")]
        assert report.failed[0].error == "Vault is locked."
        assert [i["name"] for i in bw.created_items] == ["GitHub", "Bank"]
        assert [name for _, name, _ in bw.uploaded] == ["recovery-codes.txt", "statement.pdf", "card.png"]

    def test_locked_vault_on_attachment_recorded(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.attachment_failures["recovery-codes.txt"] = failed(stderr="Vault is locked.")
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert [(o.kind, o.source_id, o.parent_id) for o in report.failed] == [
            ("attachment", "att-1", "item-1"),
        ]
        assert report.count("item", RestoreStatus.CREATED) == 3
        assert report.count("attachment", RestoreStatus.CREATED) == 2

    def test_every_call_locked_is_all_failures(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.expired_after = 0
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert report.counts()["folder"]["failed"] == 1
        assert report.counts()["item"]["failed"] == 3
        assert bw.uploaded == []

    def test_temp_write_failure_recorded(self, make_bw, snapshot, fake_clock, monkeypatch):
        from pathlib import Path

        real_write = Path.write_bytes

        def write_bytes(self, data):
            if self.name == "statement.pdf":
                raise OSError(28, "No space left on device")
            return real_write(self, data)

        monkeypatch.setattr(Path, "write_bytes", write_bytes)
        bw = make_bw()
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert [(o.kind, o.source_id) for o in report.failed] == [("attachment", "att-2")]
        assert "No space left" in report.failed[0].error
        assert [name for _, name, _ in bw.uploaded] == ["recovery-codes.txt", "card.png"]

    def test_created_item_without_id_fails_its_attachments(self, make_bw, snapshot, fake_clock):
        bw = make_bw()
        bw.omit_item_ids = True
        report = _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert report.count("item", RestoreStatus.CREATED) == 3
        assert report.count("attachment", RestoreStatus.FAILED) == 3
        assert {o.error for o in report.failed} == {"created item has no id"}
        assert {o.parent_id for o in report.failed} == {"item-1", "item-3"}
        assert not any(c[:2] == ["create", "attachment"] for c in bw.commands())
        assert bw.uploaded == []

    def test_no_temp_files_left(self, make_bw, snapshot, fake_clock, tmp_path, monkeypatch):
        import tempfile

        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        _engine(make_bw(), fake_clock).restore(snapshot, SESSION)
        assert not any(p.name.startswith("portwarden_restore_") for p in tmp_path.iterdir())


class TestSkipExisting:

    def test_existing_items_skipped(self, make_bw, snapshot, sample_vault, fake_clock):
        bw = make_bw(items=[sample_vault["items"][0]])
        report = _engine(bw, fake_clock, skip_existing=True).restore(snapshot, SESSION)
        assert report.ok
        assert report.count("item", RestoreStatus.SKIPPED) == 1
        assert [i["name"] for i in bw.created_items] == ["Server notes", "Bank"]
        # skipped item's attachment is not uploaded either
        assert all(name != "recovery-codes.txt" for _, name, _ in bw.uploaded)

    def test_off_by_default(self, make_bw, snapshot, sample_vault, fake_clock):
        bw = make_bw(items=[sample_vault["items"][0]])
        _engine(bw, fake_clock).restore(snapshot, SESSION)
        assert ["list", "items"] not in bw.commands()
        assert len(bw.created_items) == 3
