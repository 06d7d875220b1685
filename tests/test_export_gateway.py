"""Tests for VaultExportGateway and Throttle: export, attachment fetching, pacing."""

import pytest

from conftest import SESSION
from portwarden.bw.export_gateway import VaultExportGateway
from portwarden.bw.throttle import Throttle
from portwarden.exceptions import (
    AttachmentFetchFailed,
    IncompleteSnapshotError,
    VaultLockedError,
)


def _gateway(bw, clock, delay_ms=300):
    return VaultExportGateway(bw, throttle=Throttle(delay_ms, clock=clock, sleep=clock.sleep))


class TestThrottle:

    def test_first_call_not_delayed(self, fake_clock):
        t = Throttle(300, clock=fake_clock, sleep=fake_clock.sleep)
        t.wait()
        assert fake_clock.sleeps == []

    def test_spacing(self, fake_clock):
        t = Throttle(300, clock=fake_clock, sleep=fake_clock.sleep)
        t.wait()
        fake_clock.advance(0.1)
        t.wait()
        assert fake_clock.sleeps == [pytest.approx(0.2)]

    def test_no_sleep_when_enough_time_passed(self, fake_clock):
        t = Throttle(300, clock=fake_clock, sleep=fake_clock.sleep)
        t.wait()
        fake_clock.advance(1.0)
        t.wait()
        assert fake_clock.sleeps == []

    def test_reset(self, fake_clock):
        t = Throttle(300, clock=fake_clock, sleep=fake_clock.sleep)
        t.wait()
        t.reset()
        t.wait()
        assert fake_clock.sleeps == []

    def test_zero_delay(self, fake_clock):
        t = Throttle(0, clock=fake_clock, sleep=fake_clock.sleep)
        for _ in range(3):
            t.wait()
        assert fake_clock.sleeps == []

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            Throttle(-1)


class TestExport:

    def test_export_snapshot(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(items=sample_vault["items"], folders=sample_vault["folders"])
        snapshot = _gateway(bw, fake_clock).export_snapshot(SESSION)
        assert [i["id"] for i in snapshot.items] == ["item-1", "item-2", "item-3"]
        assert len(snapshot.folders) == 2
        assert snapshot.attachments == {}
        assert len(snapshot.unresolved_attachments()) == 3

    def test_session_passed_to_every_call(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        gw = _gateway(bw, fake_clock)
        gw.sync(SESSION)
        gw.export_full(SESSION)
        for argv in bw.calls:
            assert argv[argv.index("--session") + 1] == SESSION

    def test_export_full(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        snapshot = _gateway(bw, fake_clock).export_full(SESSION)
        assert snapshot.attachment_for("item-1", "att-1").data == b"0123456789"
        assert snapshot.attachment_for("item-3", "att-3").file_name == "card.png"
        assert snapshot.unresolved_attachments() == []

    def test_fetch_order_and_command(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        _gateway(bw, fake_clock).export_full(SESSION)
        fetches = [c for c in bw.commands() if c[:2] == ["get", "attachment"]]
        assert fetches == [
            ["get", "attachment", "att-1", "--itemid", "item-1", "--raw"],
            ["get", "attachment", "att-2", "--itemid", "item-3", "--raw"],
            ["get", "attachment", "att-3", "--itemid", "item-3", "--raw"],
        ]

    def test_fetches_are_spaced(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault, clock=fake_clock)
        _gateway(bw, fake_clock, delay_ms=300).export_full(SESSION)
        stamps = [t for t, argv in zip(bw.times, bw.commands()) if argv[0] == "get"]
        assert len(stamps) == 3
        for earlier, later in zip(stamps, stamps[1:]):
            assert later - earlier >= 0.3 - 1e-9
        # the first fetch follows the list calls immediately
        assert len(fake_clock.sleeps) == 2

    def test_no_extra_sleep_for_slow_calls(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault, clock=fake_clock, call_cost=0.5)
        _gateway(bw, fake_clock, delay_ms=300).export_full(SESSION)
        assert fake_clock.sleeps == []


class TestAttachmentFailures:

    def test_missing_attachment_aborts(self, make_bw, sample_vault, fake_clock):
        del sample_vault["blobs"][("item-3", "att-2")]
        bw = make_bw(**sample_vault)
        with pytest.raises(AttachmentFetchFailed) as exc:
            _gateway(bw, fake_clock).export_full(SESSION)
        assert exc.value.item_id == "item-3"
        assert exc.value.attachment_id == "att-2"

    def test_size_mismatch(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        bw.short_attachments.add("att-1")
        with pytest.raises(AttachmentFetchFailed, match="expected 10 bytes, received 9"):
            _gateway(bw, fake_clock).export_full(SESSION)

    def test_session_error_not_wrapped(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        bw.expired_after = 3  # list items, list folders, first attachment
        with pytest.raises(VaultLockedError):
            _gateway(bw, fake_clock).export_full(SESSION)

    def test_validate_catches_unfetched(self, make_bw, sample_vault, fake_clock):
        bw = make_bw(**sample_vault)
        snapshot = _gateway(bw, fake_clock).export_snapshot(SESSION)
        with pytest.raises(IncompleteSnapshotError):
            snapshot.validate()
