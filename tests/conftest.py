"""
Shared pytest fixtures for the portwarden test suite.

  - Audit logger -> temp directory (no test events in ./audit_logs)
  - make_bw      -> FakeBW factory: a BWClient whose subprocess seam is
                    replaced by an in-memory vault
  - fake_clock   -> controllable monotonic clock + sleep for throttle tests
"""

import base64
import copy
import json
from pathlib import Path

import pytest

from portwarden.bw.client import BWClient, CommandOutput

SESSION = "c2Vzc2lvbi10b2tlbi1mb3ItdGVzdHM="


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the global AuditLogger at a temp directory for every test."""
    import portwarden.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    old_dir = audit_mod._audit_log_dir
    audit_mod.configure_audit_log(tmp_path / "audit_logs")

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger
    audit_mod._audit_log_dir = old_dir


class FakeClock:
    """Monotonic clock that only moves when told to (or when sleep() is called)."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


def ok(stdout="", stderr=""):
    return CommandOutput(stdout=stdout, stderr=stderr, returncode=0)


def failed(stderr="", stdout="", returncode=1):
    return CommandOutput(stdout=stdout, stderr=stderr, returncode=returncode)


class FakeBW(BWClient):
    """BWClient backed by an in-memory vault instead of the bw binary.

    Args:
        items, folders: What ``bw list`` returns.
        blobs: {(item_id, attachment_id): bytes} served by ``bw get attachment``.
        unlock, login: Outputs returned by successive unlock/login calls.
        clock: When given, each call is stamped with clock() in ``times``.
        call_cost: Seconds the clock advances per call.
    """

    def __init__(self, items=None, folders=None, blobs=None, unlock=None, login=None,
                 clock=None, call_cost=0.0):
        super().__init__("bw", env={})
        self.items = copy.deepcopy(items or [])
        self.folders = copy.deepcopy(folders or [])
        self.blobs = dict(blobs or {})
        self.unlock_outputs = list(unlock or [ok(stdout=SESSION)])
        self.login_outputs = list(login or [])
        self.logout_output = ok(stdout="You have logged out.")
        self.clock = clock
        self.call_cost = call_cost

        # Failure hooks
        self.reject_item_names = set()
        self.reject_attachment_files = set()
        self.short_attachments = set()
        self.item_failures = {}  # item name -> CommandOutput returned by create item
        self.attachment_failures = {}  # file name -> CommandOutput returned by create attachment
        self.omit_item_ids = False
        self.expired_after = None  # calls after which everything says "Vault is locked."

        # Records
        self.calls = []
        self.envs = []
        self.times = []
        self.created_folders = []
        self.created_items = []
        self.uploaded = []  # (new item id, file name, bytes)

    # -- helpers --------------------------------------------------------

    def commands(self):
        """argv of every call without the binary and the --session pair."""
        return [self._strip(argv) for argv in self.calls]

    @staticmethod
    def _strip(argv):
        args = list(argv[1:])
        if "--session" in args:
            i = args.index("--session")
            del args[i:i + 2]
        return args

    @staticmethod
    def _decode(payload):
        return json.loads(base64.b64decode(payload))

    # -- subprocess seam ------------------------------------------------

    def _execute(self, argv, channel, raw, echo_stderr, env):
        self.calls.append(list(argv))
        self.envs.append(dict(env))
        if self.clock is not None:
            self.times.append(self.clock())
            self.clock.advance(self.call_cost)
        if self.expired_after is not None and len(self.calls) > self.expired_after:
            return failed(stderr="Vault is locked.")
        args = self._strip(argv)
        command = args[0]

        if command == "unlock":
            return self.unlock_outputs.pop(0)
        if command == "login":
            return self.login_outputs.pop(0)
        if command == "logout":
            return self.logout_output
        if command == "sync":
            return ok(stdout="Syncing complete.")
        if args[:2] == ["list", "items"]:
            return ok(stdout=json.dumps(self.items))
        if args[:2] == ["list", "folders"]:
            return ok(stdout=json.dumps(self.folders))
        if args[:2] == ["get", "attachment"]:
            attachment_id, item_id = args[2], args[4]
            data = self.blobs.get((item_id, attachment_id))
            if data is None:
                return CommandOutput(stdout=b"", stderr="Not found.", returncode=1)
            if attachment_id in self.short_attachments:
                data = data[:-1]
            return CommandOutput(stdout=data, returncode=0)
        if args[:2] == ["create", "folder"]:
            folder = self._decode(args[2])
            folder["id"] = f"new-folder-{len(self.created_folders) + 1}"
            self.created_folders.append(folder)
            return ok(stdout=json.dumps(folder))
        if args[:2] == ["create", "item"]:
            item = self._decode(args[2])
            if item.get("name") in self.reject_item_names:
                return failed(stderr="Bad Request: item rejected")
            if item.get("name") in self.item_failures:
                return self.item_failures[item["name"]]
            item["id"] = f"new-item-{len(self.created_items) + 1}"
            self.created_items.append(item)
            if self.omit_item_ids:
                return ok(stdout=json.dumps({k: v for k, v in item.items() if k != "id"}))
            return ok(stdout=json.dumps(item))
        if args[:2] == ["create", "attachment"]:
            path = Path(args[args.index("--file") + 1])
            item_id = args[args.index("--itemid") + 1]
            if path.name in self.reject_attachment_files:
                return failed(stderr="Bad Request: attachment rejected")
            if path.name in self.attachment_failures:
                return self.attachment_failures[path.name]
            self.uploaded.append((item_id, path.name, path.read_bytes()))
            return ok(stdout=json.dumps({"id": item_id}))
        return failed(stderr=f"Invalid command: {command}")


@pytest.fixture
def make_bw():
    """Factory for FakeBW clients."""
    return FakeBW


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_vault():
    """Two folders (one the 'No Folder' pseudo-entry), three items, three attachments."""
    items = [
        {
            "object": "item",
            "id": "item-1",
            "organizationId": None,
            "folderId": "folder-1",
            "type": 1,
            "name": "GitHub",
            "notes": None,
            "favorite": False,
            "login": {"username": "alice", "password": "hunter2", "uris": []},
            "collectionIds": [],
            "revisionDate": "2024-01-01T00:00:00.000Z",
            "attachments": [
                {"id": "att-1", "fileName": "recovery-codes.txt", "size": "10",
                 "sizeName": "10 Bytes", "url": "https://example.invalid/att-1"},
            ],
        },
        {
            "object": "item",
            "id": "item-2",
            "organizationId": None,
            "folderId": None,
            "type": 2,
            "name": "Server notes",
            "notes": "rack 4",
            "favorite": True,
            "secureNote": {"type": 0},
            "collectionIds": [],
            "revisionDate": "2024-01-02T00:00:00.000Z",
        },
        {
            "object": "item",
            "id": "item-3",
            "organizationId": None,
            "folderId": "folder-1",
            "type": 1,
            "name": "Bank",
            "notes": None,
            "favorite": False,
            "login": {"username": "alice@example.com", "password": "pw", "uris": []},
            "collectionIds": [],
            "revisionDate": "2024-01-03T00:00:00.000Z",
            "attachments": [
                {"id": "att-2", "fileName": "statement.pdf", "size": "6"},
                {"id": "att-3", "fileName": "card.png", "size": "4"},
            ],
        },
    ]
    folders = [
        {"object": "folder", "id": "folder-1", "name": "Work"},
        {"object": "folder", "id": None, "name": "No Folder"},
    ]
    blobs = {
        ("item-1", "att-1"): b"0123456789",
        ("item-3", "att-2"): b"%PDF-1",
        ("item-3", "att-3"): b"\x89PNG",
    }
    return {"items": items, "folders": folders, "blobs": blobs}


@pytest.fixture
def codec():
    """BackupCodec with the cheapest accepted scrypt cost."""
    from portwarden.backup.backup_crypto import BackupCodec

    return BackupCodec(kdf_log2_n=10)
