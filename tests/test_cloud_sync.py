"""Tests for the reconciliation engine (upload, download and tombstones)."""
from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeAuth, RecordingScheduler
from src.models.base import ensure_utc
from src.models.bookmark import TrashItem
from src.models.scheduled_action import Recurrence, ScheduledAction
from src.models.shortcut import FileType, IconType, Shortcut, ShortcutKind
from src.models.sync import EntityType, PendingReason
from src.services.errors import NotAuthenticatedError, RemoteStoreError
from src.services.remote_store import RemoteCollection


def bookmarks_of(device):
    return device.repositories[EntityType.BOOKMARK]


def remote_action_row(entity_id, trigger_time, recurrence="once", destination=None, **extra):
    row = {
        "entity_id": entity_id,
        "user_id": "user-1",
        "name": f"Ação {entity_id}",
        "description": None,
        "destination": destination or {"type": "url", "uri": "https://news.example"},
        "trigger_time": trigger_time.isoformat(),
        "recurrence": recurrence,
        "recurrence_anchor": None,
        "enabled": True,
        "created_at": trigger_time.isoformat(),
    }
    row.update(extra)
    return row


class TestIdentity:
    def test_upload_keys_on_local_id(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://example.com", title="Exemplo")

        result = device.guarded_sync()

        assert result.success
        assert result.uploaded == 1
        row = remote.rows[RemoteCollection.BOOKMARKS][("user-1", bookmark.id)]
        assert row["entity_id"] == bookmark.id
        assert row["folder"] == "Uncategorized"
        assert "id" not in row

    def test_download_preserves_entity_id(self, make_device, remote):
        device_a = make_device("a")
        original = bookmarks_of(device_a).add_link("https://example.com", title="Exemplo", folder="Leitura")
        device_a.guarded_sync()

        device_b = make_device("b")
        result = device_b.guarded_sync()

        assert result.downloaded == 1
        restored = bookmarks_of(device_b).get_by_id(original.id)
        assert restored is not None
        assert restored.url == original.url
        assert restored.folder == "Leitura"
        assert ensure_utc(restored.created_at) == ensure_utc(original.created_at)

    def test_same_url_stays_two_entities(self, make_device, remote):
        device_a = make_device("a")
        bookmarks_of(device_a).add_link("https://example.com")
        bookmarks_of(device_a).add_link("https://example.com")
        device_a.guarded_sync()

        assert len(remote.entity_ids(RemoteCollection.BOOKMARKS)) == 2

        device_b = make_device("b")
        device_b.guarded_sync()
        assert bookmarks_of(device_b).count() == 2

    def test_download_never_overwrites_local(self, make_device, remote):
        device_a = make_device("a")
        bookmark = bookmarks_of(device_a).add_link("https://example.com", title="Local")
        device_a.guarded_sync()
        remote.rows[RemoteCollection.BOOKMARKS][("user-1", bookmark.id)]["title"] = "Remoto"

        device_a.guarded_download()

        assert bookmarks_of(device_a).get_by_id(bookmark.id).title == "Local"


class TestIdempotence:
    def test_second_sync_changes_nothing(self, device):
        bookmarks_of(device).add_link("https://a.dev")
        bookmarks_of(device).add_link("https://b.dev")

        first = device.guarded_sync()
        second = device.guarded_sync()

        assert first.uploaded == 2
        assert (second.uploaded, second.downloaded) == (0, 0)

    def test_devices_converge(self, make_device):
        device_a = make_device("a")
        device_b = make_device("b")
        bookmarks_of(device_a).add_link("https://a.dev")
        bookmarks_of(device_b).add_link("https://b.dev")

        device_a.guarded_sync()
        device_b.guarded_sync()
        device_a.guarded_sync()

        assert bookmarks_of(device_a).get_ids() == bookmarks_of(device_b).get_ids()
        again = device_b.guarded_sync()
        assert (again.uploaded, again.downloaded) == (0, 0)

    def test_local_edit_is_pushed_as_update(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://a.dev", title="Antes")
        device.guarded_sync()

        bookmark.title = "Depois"
        bookmarks_of(device).save(bookmark)
        result = device.guarded_sync()

        assert result.uploaded == 1
        assert remote.rows[RemoteCollection.BOOKMARKS][("user-1", bookmark.id)]["title"] == "Depois"


class TestDeletions:
    def test_deletion_propagates(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://gone.dev")
        device.guarded_sync()

        bookmarks_of(device).delete_permanently(bookmark.id)
        result = device.guarded_sync()

        assert result.success
        assert bookmark.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)
        assert ("bookmark", bookmark.id) in remote.tombstones()
        assert device.deletion_tracker.get_all() == []

    def test_tombstone_blocks_download(self, make_device, remote):
        device_a = make_device("a")
        bookmark = bookmarks_of(device_a).add_link("https://gone.dev")
        device_a.guarded_sync()
        # Tombstone gravado, mas a linha remota ainda existe
        remote.upsert(RemoteCollection.DELETED_ENTITIES, {
            "user_id": "user-1", "entity_type": "bookmark", "entity_id": bookmark.id,
            "deleted_at": "2024-06-01T10:00:00+00:00",
        })

        device_b = make_device("b")
        result = device_b.guarded_sync()

        assert result.success
        assert bookmark.id not in bookmarks_of(device_b).get_ids()

    def test_tombstone_for_other_type_does_not_apply(self, make_device, remote):
        device_a = make_device("a")
        bookmark = bookmarks_of(device_a).add_link("https://kept.dev")
        device_a.guarded_sync()
        remote.upsert(RemoteCollection.DELETED_ENTITIES, {
            "user_id": "user-1", "entity_type": "trash", "entity_id": bookmark.id,
            "deleted_at": "2024-06-01T10:00:00+00:00",
        })

        device_b = make_device("b")
        device_b.guarded_sync()

        assert bookmark.id in bookmarks_of(device_b).get_ids()

    def test_deleted_elsewhere_is_removed_locally(self, make_device, remote):
        device_a = make_device("a")
        device_b = make_device("b")
        bookmark = bookmarks_of(device_a).add_link("https://shared.dev")
        device_a.guarded_sync()
        device_b.guarded_sync()
        assert bookmark.id in bookmarks_of(device_b).get_ids()

        bookmarks_of(device_a).delete_permanently(bookmark.id)
        device_a.guarded_sync()
        device_b.guarded_sync()

        assert bookmark.id not in bookmarks_of(device_b).get_ids()
        # A remoção vinda da nuvem não gera novo tombstone local
        assert device_b.deletion_tracker.get_all() == []

    def test_failed_tombstone_upload_does_not_resurrect(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://gone.dev")
        device.guarded_sync()
        bookmarks_of(device).delete_permanently(bookmark.id)
        remote.fail_upsert[RemoteCollection.DELETED_ENTITIES] = RemoteStoreError("unavailable", 503)

        result = device.guarded_sync()

        assert result.success
        assert result.pending_reason == PendingReason.PARTIAL
        assert any(w.startswith("deletions") for w in result.warnings)
        assert bookmark.id not in bookmarks_of(device).get_ids()
        assert device.deletion_tracker.pending_ids()[EntityType.BOOKMARK] == {bookmark.id}

    def test_partial_deletion_upload_keeps_failed_items(self, device, remote):
        repo = bookmarks_of(device)
        ok = repo.add_link("https://ok.dev")
        stuck = repo.add_link("https://stuck.dev")
        device.guarded_sync()
        repo.delete_permanently(ok.id)
        repo.delete_permanently(stuck.id)
        remote.fail_delete_ids[stuck.id] = httpx.ConnectError("offline")

        phase = device._engine.upload_deletions()

        assert not phase.success
        assert phase.reason == PendingReason.PARTIAL
        assert phase.count == 1
        assert [d.entity_id for d in device.deletion_tracker.get_all()] == [stuck.id]
        assert ok.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)

        del remote.fail_delete_ids[stuck.id]
        assert device._engine.upload_deletions().success
        assert device.deletion_tracker.get_all() == []

    def test_stale_device_reupload_is_purged_from_cloud(self, make_device, remote):
        device_a = make_device("a")
        device_b = make_device("b")
        bookmark = bookmarks_of(device_a).add_link("https://shared.dev")
        device_a.guarded_sync()
        device_b.guarded_sync()

        bookmarks_of(device_a).delete_permanently(bookmark.id)
        device_a.guarded_sync()
        # B ainda tem a cópia e a reenvia antes de ler os tombstones
        result = device_b.guarded_sync()

        assert result.success
        assert bookmark.id not in bookmarks_of(device_b).get_ids()
        assert bookmark.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)
        assert ("bookmark", bookmark.id) in remote.tombstones()
        assert device_b.get_cloud_counts()[EntityType.BOOKMARK] == 0

    def test_interrupted_deletion_upload_clears_processed(self, device, remote):
        repo = bookmarks_of(device)
        first = repo.add_link("https://first.dev")
        second = repo.add_link("https://second.dev")
        device.guarded_sync()
        repo.delete_permanently(first.id)
        repo.delete_permanently(second.id)
        remote.fail_delete_ids[second.id] = NotAuthenticatedError()

        phase = device._engine.upload_deletions()

        assert not phase.success
        assert phase.reason == PendingReason.AUTH
        assert [d.entity_id for d in device.deletion_tracker.get_all()] == [second.id]

    def test_duplicate_tombstone_is_ignored(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://twice.dev")
        device.guarded_sync()
        remote.upsert(RemoteCollection.DELETED_ENTITIES, {
            "user_id": "user-1", "entity_type": "bookmark", "entity_id": bookmark.id,
            "deleted_at": "2024-06-01T10:00:00+00:00",
        })

        bookmarks_of(device).delete_permanently(bookmark.id)
        assert device._engine.upload_deletions().success
        assert len(remote.tombstones()) == 1

    def test_trash_flow(self, make_device, remote):
        device_a = make_device("a")
        bookmark = bookmarks_of(device_a).add_link("https://old.dev", title="Velho")
        device_a.guarded_sync()

        item = device_a.repositories[EntityType.TRASH].move_to_trash(bookmark, bookmarks_of(device_a))
        device_a.guarded_sync()

        assert bookmark.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)
        trash_row = remote.rows[RemoteCollection.TRASH][("user-1", item.id)]
        assert trash_row["retention_days"] == item.retention_days

        device_b = make_device("b")
        device_b.guarded_sync()
        restored = device_b.repositories[EntityType.TRASH].get_by_id(item.id)
        assert isinstance(restored, TrashItem)
        assert restored.url == "https://old.dev"
        assert bookmarks_of(device_b).count() == 0


class TestFailureHandling:
    def test_pivot_upload_failure_aborts_cycle(self, device, remote):
        bookmarks_of(device).add_link("https://a.dev")
        remote.fail_upsert[RemoteCollection.BOOKMARKS] = httpx.ConnectError("offline")

        result = device.guarded_sync()

        assert not result.success
        assert result.pending_reason == PendingReason.NETWORK
        assert not any(call[0] == "select" for call in remote.calls)

    def test_secondary_upload_failure_is_soft(self, device, remote):
        bookmarks_of(device).add_link("https://a.dev")
        device.repositories[EntityType.SHORTCUT].append_many([Shortcut(name="Site", kind=ShortcutKind.LINK)])
        remote.fail_upsert[RemoteCollection.SHORTCUTS] = httpx.ReadTimeout("slow")

        result = device.guarded_sync()

        assert result.success
        assert result.uploaded == 1
        assert result.pending_reason == PendingReason.PARTIAL
        assert any(w.startswith("shortcut upload") for w in result.warnings)

    def test_secondary_local_store_failure_is_soft(self, make_device, remote):
        device_a = make_device("a")
        bookmark = bookmarks_of(device_a).add_link("https://a.dev")
        device_a.repositories[EntityType.SHORTCUT].append_many([Shortcut(name="Site", kind=ShortcutKind.LINK)])
        device_a.guarded_sync()

        device_b = make_device("b")

        def locked(entities):
            raise OperationalError("INSERT INTO shortcut", {}, Exception("database is locked"))

        device_b.repositories[EntityType.SHORTCUT].append_many = locked
        result = device_b.guarded_sync()

        assert result.success
        assert result.downloaded == 1
        assert result.pending_reason == PendingReason.PARTIAL
        assert any(w.startswith("shortcut download") for w in result.warnings)
        assert bookmark.id in bookmarks_of(device_b).get_ids()
        assert device_b.status.get_status().pending_reason == PendingReason.PARTIAL

    def test_secondary_unexpected_error_is_soft(self, device):
        bookmarks_of(device).add_link("https://a.dev")

        def broken():
            raise RuntimeError("corrupted row")

        device.repositories[EntityType.SCHEDULED_ACTION].list_all = broken
        result = device.guarded_sync()

        assert result.success
        assert result.uploaded == 1
        assert any(w.startswith("scheduled_action upload") for w in result.warnings)

    def test_pivot_local_store_failure_keeps_upload_count(self, make_device, remote):
        device_a = make_device("a")
        bookmarks_of(device_a).add_link("https://a.dev")
        device_a.guarded_sync()

        device_b = make_device("b")
        bookmarks_of(device_b).add_link("https://b.dev")

        def locked(entities):
            raise OperationalError("INSERT INTO bookmark", {}, Exception("database is locked"))

        bookmarks_of(device_b).append_many = locked
        result = device_b.guarded_sync()

        assert not result.success
        assert result.uploaded == 1
        assert result.pending_reason == PendingReason.UNKNOWN

    def test_item_failure_is_skipped(self, device, remote):
        repo = bookmarks_of(device)
        bad = repo.add_link("https://bad.dev")
        repo.add_link("https://good.dev")
        remote.fail_upsert_ids[bad.id] = RemoteStoreError("422", 422)

        result = device.guarded_sync()

        assert result.success
        assert result.uploaded == 1
        assert bad.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)

    def test_not_authenticated(self, make_device):
        device = make_device("anon", auth=FakeAuth(user_id=None))
        bookmarks_of(device).add_link("https://a.dev")

        result = device.guarded_sync()

        assert not result.success
        assert result.error == "Not authenticated"
        assert result.pending_reason == PendingReason.AUTH

    def test_tombstone_fetch_failure_stops_downloads(self, device, remote):
        remote.fail_select[RemoteCollection.DELETED_ENTITIES] = httpx.ConnectError("offline")

        result = device.guarded_sync()

        assert not result.success
        assert result.pending_reason == PendingReason.NETWORK
        assert ("select", RemoteCollection.BOOKMARKS, "user-1") not in remote.calls

    def test_pivot_download_failure(self, device, remote):
        remote.fail_select[RemoteCollection.BOOKMARKS] = RemoteStoreError("500", 500)

        result = device.guarded_download()

        assert not result.success
        assert result.pending_reason == PendingReason.UNKNOWN
        assert ("select", RemoteCollection.TRASH, "user-1") not in remote.calls

    def test_malformed_remote_row_is_skipped(self, device, remote):
        remote.rows[RemoteCollection.BOOKMARKS][("user-1", "broken")] = {
            "user_id": "user-1", "entity_id": "broken", "url": "https://x.dev",
        }

        result = device.guarded_sync()

        assert result.success
        assert "broken" not in bookmarks_of(device).get_ids()


class TestShortcuts:
    def test_thumbnail_is_not_uploaded(self, device, remote):
        shortcut = Shortcut(
            name="Foto", kind=ShortcutKind.FILE, file_type=FileType.IMAGE,
            content_uri="content://media/1", icon_type=IconType.THUMBNAIL,
            icon_value="data:image/png;base64,AAAA", thumbnail_data="AAAA",
        )
        device.repositories[EntityType.SHORTCUT].append_many([shortcut])

        device.guarded_sync()

        row = remote.rows[RemoteCollection.SHORTCUTS][("user-1", shortcut.id)]
        assert row["icon_type"] == "emoji"
        assert row["file_type"] == "image"
        assert "thumbnail_data" not in row

    def test_file_shortcut_arrives_dormant(self, make_device):
        device_a = make_device("a")
        file_shortcut = Shortcut(name="Foto", kind=ShortcutKind.FILE, content_uri="content://media/1")
        link_shortcut = Shortcut(name="Site", kind=ShortcutKind.LINK, content_uri="https://a.dev")
        device_a.repositories[EntityType.SHORTCUT].append_many([file_shortcut, link_shortcut])
        device_a.guarded_sync()

        device_b = make_device("b")
        device_b.guarded_sync()

        shortcuts = device_b.repositories[EntityType.SHORTCUT]
        assert shortcuts.get_by_id(file_shortcut.id).is_dormant
        assert not shortcuts.get_by_id(link_shortcut.id).is_dormant


class TestScheduledActions:
    def test_past_due_actions_are_adjusted(self, device, remote, clock, scheduler):
        past = clock.now - timedelta(days=3)
        future = clock.now + timedelta(days=1)
        remote.upsert(RemoteCollection.SCHEDULED_ACTIONS, remote_action_row("once-past", past))
        remote.upsert(RemoteCollection.SCHEDULED_ACTIONS, remote_action_row("daily-past", past, "daily"))
        remote.upsert(RemoteCollection.SCHEDULED_ACTIONS, remote_action_row("future", future))
        remote.upsert(RemoteCollection.SCHEDULED_ACTIONS, remote_action_row(
            "file", future, destination={"type": "file", "uri": "content://docs/7"},
        ))

        result = device.guarded_download()

        assert result.success
        assert result.downloaded == 4
        actions = device.repositories[EntityType.SCHEDULED_ACTION]
        assert not actions.get_by_id("once-past").enabled
        daily = actions.get_by_id("daily-past")
        assert daily.enabled
        assert ensure_utc(daily.trigger_time) == past + timedelta(days=4)
        assert actions.get_by_id("future").enabled
        assert not actions.get_by_id("file").enabled
        assert sorted(scheduler.scheduled) == ["daily-past", "future"]

    def test_scheduler_failure_is_not_fatal(self, make_device, remote, clock):
        device = make_device("alarms", scheduler=RecordingScheduler(fail=True))
        remote.upsert(RemoteCollection.SCHEDULED_ACTIONS, remote_action_row("a", clock.now + timedelta(hours=2)))

        result = device.guarded_sync()

        assert result.success
        assert result.downloaded == 1

    def test_local_action_roundtrips(self, make_device, clock):
        device_a = make_device("a")
        action = ScheduledAction(
            name="Remédio",
            destination={"type": "contact", "phone_number": "+5511999990000", "is_whatsapp": True},
            trigger_time=clock.now + timedelta(hours=1),
            recurrence=Recurrence.DAILY,
            recurrence_anchor={"hour": 13, "minute": 0},
        )
        device_a.repositories[EntityType.SCHEDULED_ACTION].append_many([action])
        device_a.guarded_sync()

        device_b = make_device("b")
        device_b.guarded_sync()

        restored = device_b.repositories[EntityType.SCHEDULED_ACTION].get_by_id(action.id)
        assert restored.get_destination().phone_number == "+5511999990000"
        assert restored.get_anchor().hour == 13
        assert restored.enabled

    def test_removed_actions_cancel_triggers(self, make_device, remote, clock, scheduler):
        device_a = make_device("a")
        device_b = make_device("b")
        action = ScheduledAction(
            name="Alarme", destination={"type": "url", "uri": "https://a.dev"},
            trigger_time=clock.now + timedelta(hours=1),
        )
        device_a.repositories[EntityType.SCHEDULED_ACTION].append_many([action])
        device_a.guarded_sync()
        device_b.guarded_sync()

        device_a.repositories[EntityType.SCHEDULED_ACTION].delete_permanently(action.id)
        device_a.guarded_sync()
        device_b.guarded_sync()

        assert device_b.repositories[EntityType.SCHEDULED_ACTION].get_by_id(action.id) is None
        assert action.id in scheduler.cancelled


class TestDirectionalRuns:
    def test_upload_only_never_downloads(self, make_device, remote):
        device_a = make_device("a")
        bookmarks_of(device_a).add_link("https://a.dev")
        device_a.guarded_sync()

        device_b = make_device("b")
        bookmarks_of(device_b).add_link("https://b.dev")
        result = device_b.guarded_upload()

        assert result.success
        assert result.uploaded == 1
        assert result.downloaded == 0
        assert bookmarks_of(device_b).count() == 1
        assert len(remote.entity_ids(RemoteCollection.BOOKMARKS)) == 2

    def test_upload_only_flushes_deletions(self, device, remote):
        bookmark = bookmarks_of(device).add_link("https://gone.dev")
        device.guarded_upload()
        bookmarks_of(device).delete_permanently(bookmark.id)

        device.guarded_upload()

        assert ("bookmark", bookmark.id) in remote.tombstones()

    def test_download_only_never_uploads(self, make_device, remote):
        device_a = make_device("a")
        bookmarks_of(device_a).add_link("https://a.dev")
        device_a.guarded_sync()

        device_b = make_device("b")
        local = bookmarks_of(device_b).add_link("https://b.dev")
        result = device_b.guarded_download()

        assert result.downloaded == 1
        assert result.uploaded == 0
        assert local.id not in remote.entity_ids(RemoteCollection.BOOKMARKS)


class TestCloudMaintenance:
    def test_counts_and_clear(self, device, remote):
        bookmarks_of(device).add_link("https://a.dev")
        device.repositories[EntityType.SHORTCUT].append_many([Shortcut(name="Site", kind=ShortcutKind.LINK)])
        device.guarded_sync()

        counts = device.get_cloud_counts()
        assert counts[EntityType.BOOKMARK] == 1
        assert counts[EntityType.SHORTCUT] == 1
        assert counts[EntityType.SCHEDULED_ACTION] == 0

        assert device.clear_cloud_data()
        assert device.get_cloud_counts()[EntityType.BOOKMARK] == 0
        # Dados locais ficam intactos
        assert bookmarks_of(device).count() == 1

    def test_counts_without_session(self, make_device):
        device = make_device("anon", auth=FakeAuth(user_id=None))
        assert device.get_cloud_counts() is None
        assert not device.clear_cloud_data()


@pytest.mark.parametrize("entity_type", list(EntityType))
def test_every_type_has_an_adapter(device, entity_type):
    adapter = device._engine.adapters[entity_type]
    assert adapter.entity_type == entity_type
