"""Tests for create/update/skip reconciliation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from typecho_migrator.models import ContentRecord, IdentityEntry, LinkRecord
from typecho_migrator.reconcile import Action, decide, dedupe_by_key, find_duplicate_keys, plan, reconcile
from typecho_migrator.statuses import SyncAction

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _post(cid: int, slug: str, modified: datetime = T0) -> ContentRecord:
    return ContentRecord(id=cid, title=slug, slug=slug, created_at=T0, modified_at=modified)


class TestDecide:
    def test_missing_entry_creates(self):
        assert decide(T0, None) == Action.create()

    def test_equal_instants_skip(self):
        action = decide(T0, IdentityEntry(remote_id="p1", modified_at=T0))
        assert action.kind == SyncAction.SKIP
        assert action.remote_id == "p1"

    def test_equal_instants_in_different_offsets_skip(self):
        remote = "2024-01-01T08:00:00+08:00"
        assert decide(T0, IdentityEntry(remote_id="p1", modified_at=remote)).kind == SyncAction.SKIP

    def test_epoch_and_iso_compare_as_instants(self):
        remote = IdentityEntry(remote_id="p1", modified_at="2024-01-01T00:00:00.000Z")
        assert decide(int(T0.timestamp()), remote).kind == SyncAction.SKIP

    def test_newer_source_updates(self):
        action = decide(T0 + timedelta(seconds=1), IdentityEntry(remote_id="p1", modified_at=T0))
        assert action == Action.update("p1")

    def test_older_source_skips(self):
        action = decide(T0 - timedelta(days=1), IdentityEntry(remote_id="p1", modified_at=T0))
        assert action.kind == SyncAction.SKIP

    def test_remote_without_timestamp_updates(self):
        assert decide(T0, IdentityEntry(remote_id="p1")).kind == SyncAction.UPDATE

    def test_fingerprint_match_skips(self):
        entry = IdentityEntry(remote_id="l1", fingerprint="abc")
        assert decide(None, entry, "abc").kind == SyncAction.SKIP

    def test_fingerprint_mismatch_updates(self):
        entry = IdentityEntry(remote_id="l1", fingerprint="abc")
        assert decide(None, entry, "def") == Action.update("l1")


class TestReconcile:
    def test_idempotent_against_own_output(self):
        records = [_post(1, "a"), _post(2, "b", T0 + timedelta(hours=1))]
        identity = {r.slug: IdentityEntry(remote_id=f"id-{r.id}", modified_at=r.modified_at) for r in records}
        assert all(action.kind == SyncAction.SKIP for _, action in plan(records, identity))

    def test_abc_scenario(self):
        identity = {
            "a": IdentityEntry(remote_id="A", modified_at=T0 - timedelta(days=2)),
            "b": IdentityEntry(remote_id="B", modified_at=T0),
        }
        records = [_post(1, "a"), _post(2, "b"), _post(3, "c")]

        kinds = [action.kind for _, action in plan(records, identity)]

        assert kinds == [SyncAction.UPDATE, SyncAction.SKIP, SyncAction.CREATE]

    def test_naive_datetime_is_utc(self):
        naive = datetime(2024, 1, 1, 0, 0, 0)
        record = _post(1, "a", naive)
        entry = IdentityEntry(remote_id="A", modified_at=T0.astimezone(timezone(timedelta(hours=-5))))
        assert reconcile(record, {"a": entry}).kind == SyncAction.SKIP

    def test_custom_key_for_links(self):
        link = LinkRecord(id=1, name="Friend", url="http://www.friend.example/")
        identity = {"https://friend.example": IdentityEntry(remote_id="L", fingerprint=link.fingerprint)}
        assert reconcile(link, identity, key=lambda r: r.identity).kind == SyncAction.SKIP

    def test_changed_link_updates(self):
        link = LinkRecord(id=1, name="Friend", url="https://friend.example", description="new")
        stale = LinkRecord(id=1, name="Friend", url="https://friend.example")
        identity = {"https://friend.example": IdentityEntry(remote_id="L", fingerprint=stale.fingerprint)}
        assert reconcile(link, identity, key=lambda r: r.identity).kind == SyncAction.UPDATE


class TestDuplicates:
    def test_find_duplicate_keys(self):
        records = [_post(1, "x"), _post(2, "y"), _post(3, "x")]
        duplicates = find_duplicate_keys(records, lambda r: r.slug)
        assert list(duplicates) == ["x"]
        assert [r.id for r in duplicates["x"]] == [1, 3]

    def test_dedupe_keeps_later_record(self):
        records = [_post(1, "x"), _post(2, "y"), _post(3, "x")]

        winners, superseded = dedupe_by_key(records, lambda r: r.slug)

        assert [r.id for r in winners] == [2, 3]
        assert [(loser.id, winner.id) for loser, winner in superseded] == [(1, 3)]

    def test_dedupe_without_duplicates(self):
        records = [_post(1, "x"), _post(2, "y")]
        winners, superseded = dedupe_by_key(records, lambda r: r.slug)
        assert winners == records
        assert superseded == []
