"""Shared pytest fixtures."""
from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest

# O backend exige DATABASE_URL na importação
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(tempfile.mkdtemp()) / 'cloud_test.db'}",
)

from src.data.db_context import create_local_engine
from src.data.kv_store import KVStore
from src.data.local_repository import LocalRepository
from src.services.auth_service import CloudUser
from src.services.remote_store import RemoteCollection
from src.services.sync_guard import SyncCoordinator
from src.services.sync_manager import SyncManager
from src.services.sync_status import SyncStatusRecorder


class FakeClock:
    """Relógio controlável (UTC)"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeAuth:
    """Sessão fixa, sem rede"""

    def __init__(self, user_id: Optional[str] = "user-1", email: str = "ana@example.com"):
        self.user = CloudUser(id=user_id, email=email) if user_id else None

    def get_current_user(self) -> Optional[CloudUser]:
        return self.user

    def get_access_token(self) -> Optional[str]:
        return f"token-{self.user.id}" if self.user else None

    def logout(self):
        self.user = None


class FakeRemoteStore:
    """
    Armazenamento remoto em memória com a mesma interface do RemoteStore.
    Chave única (user_id, entity_id), ou (user_id, entity_type, entity_id)
    para os tombstones. Falhas podem ser injetadas por coleção ou por item.
    """

    def __init__(self):
        self.rows: Dict[RemoteCollection, Dict[tuple, Dict[str, Any]]] = {
            collection: {} for collection in RemoteCollection
        }
        self.fail_upsert: Dict[RemoteCollection, Exception] = {}
        self.fail_select: Dict[RemoteCollection, Exception] = {}
        self.fail_upsert_ids: Dict[str, Exception] = {}
        self.fail_delete_ids: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    @staticmethod
    def _key(collection: RemoteCollection, row: Dict[str, Any]) -> tuple:
        if collection == RemoteCollection.DELETED_ENTITIES:
            return row["user_id"], row["entity_type"], row["entity_id"]
        return row["user_id"], row["entity_id"]

    def upsert(self, collection, row, ignore_duplicates=False) -> str:
        collection = RemoteCollection(collection)
        self.calls.append(("upsert", collection, row.get("entity_id")))
        if collection in self.fail_upsert:
            raise self.fail_upsert[collection]
        if row.get("entity_id") in self.fail_upsert_ids:
            raise self.fail_upsert_ids[row["entity_id"]]

        key = self._key(collection, row)
        existing = self.rows[collection].get(key)
        if existing is not None:
            if ignore_duplicates:
                return "ignored"
            if all(existing.get(field) == value for field, value in row.items()):
                return "unchanged"
            existing.update(row)
            return "updated"
        self.rows[collection][key] = dict(row)
        return "inserted"

    def select_all(self, collection, user_id) -> List[Dict[str, Any]]:
        collection = RemoteCollection(collection)
        self.calls.append(("select", collection, user_id))
        if collection in self.fail_select:
            raise self.fail_select[collection]
        return [dict(row) for row in self.rows[collection].values() if row["user_id"] == user_id]

    def delete(self, collection, user_id, entity_id, entity_type=None) -> int:
        collection = RemoteCollection(collection)
        self.calls.append(("delete", collection, entity_id))
        if entity_id in self.fail_delete_ids:
            raise self.fail_delete_ids[entity_id]
        keys = [
            key for key, row in self.rows[collection].items()
            if row["user_id"] == user_id and row["entity_id"] == entity_id
            and (entity_type is None or row.get("entity_type") == entity_type)
        ]
        for key in keys:
            del self.rows[collection][key]
        return len(keys)

    def delete_all(self, collection, user_id) -> int:
        collection = RemoteCollection(collection)
        keys = [key for key, row in self.rows[collection].items() if row["user_id"] == user_id]
        for key in keys:
            del self.rows[collection][key]
        return len(keys)

    def count(self, collection, user_id) -> int:
        return len(self.select_all(collection, user_id))

    # --- Helpers de teste ---

    def entity_ids(self, collection, user_id: str = "user-1") -> set:
        return {row["entity_id"] for row in self.rows[RemoteCollection(collection)].values()
                if row["user_id"] == user_id}

    def tombstones(self, user_id: str = "user-1") -> set:
        return {
            (row["entity_type"], row["entity_id"])
            for row in self.rows[RemoteCollection.DELETED_ENTITIES].values()
            if row["user_id"] == user_id
        }


class RecordingScheduler:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.scheduled: List[str] = []
        self.cancelled: List[str] = []

    def schedule_trigger(self, action_id, payload, trigger_time, recurrence) -> bool:
        if self.fail:
            raise RuntimeError("alarm service unavailable")
        self.scheduled.append(action_id)
        return True

    def cancel_trigger(self, action_id) -> bool:
        self.cancelled.append(action_id)
        return True


@pytest.fixture(autouse=True)
def reset_change_listeners():
    """Os inscritos de mudança são compartilhados entre instâncias."""
    LocalRepository._listeners.clear()
    yield
    LocalRepository._listeners.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "local.db")


@pytest.fixture
def local_engine(db_path: str):
    engine = create_local_engine(db_path)
    yield engine
    engine.dispose()


@pytest.fixture
def kv_store(db_path: str) -> KVStore:
    return KVStore(db_path)


@pytest.fixture
def make_device(tmp_path: Path, remote: FakeRemoteStore, clock: FakeClock, scheduler: RecordingScheduler):
    """
    Fábrica de 'dispositivos': cada um com o próprio banco local,
    todos compartilhando o mesmo armazenamento remoto.
    """
    created: List[SyncManager] = []

    def factory(name: str = "device", auth: Optional[FakeAuth] = None, **overrides) -> SyncManager:
        db_path = str(tmp_path / f"{name}.db")
        kv_store = KVStore(db_path)
        manager = SyncManager(
            engine=create_local_engine(db_path),
            kv_store=kv_store,
            client=httpx.Client(base_url="http://cloud.test"),
            auth=auth or FakeAuth(),
            remote=overrides.pop("remote", remote),
            coordinator=overrides.pop(
                "coordinator",
                SyncCoordinator(min_auto_interval=timedelta(hours=6), clock=clock),
            ),
            scheduler=overrides.pop("scheduler", scheduler),
            status=SyncStatusRecorder(kv_store, clock=clock),
        )
        created.append(manager)
        return manager

    yield factory

    for manager in created:
        manager.close()
        manager.db_engine.dispose()


@pytest.fixture
def device(make_device) -> SyncManager:
    return make_device("device_a")
