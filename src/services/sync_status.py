import logging
from datetime import datetime
from typing import Callable, List, Optional
import httpx
from src.data.kv_store import KVStore
from src.models.base import ensure_utc, utc_now
from src.models.sync import PendingReason, SyncState, SyncStatus
from src.services.errors import NotAuthenticatedError

logger = logging.getLogger("SyncStatus")

SYNC_STATUS_KEY = "sync_status"

class SyncStatusRecorder:
    """
    Último estado conhecido do sync, lido pelos indicadores da UI.
    Só o resultado do sync altera este registro; o sign-out o apaga.
    """

    def __init__(self, kv_store: KVStore = None, clock: Callable[[], datetime] = utc_now):
        self.kv_store = kv_store or KVStore()
        self.clock = clock
        self._listeners: List[Callable[[SyncStatus], None]] = []

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _notify(self, status: SyncStatus):
        for callback in list(self._listeners):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    def get_status(self) -> SyncStatus:
        stored = self.kv_store.get(SYNC_STATUS_KEY)
        if not stored:
            return SyncStatus()
        try:
            return SyncStatus.model_validate(stored)
        except ValueError:
            logger.warning("Stored sync status is invalid; using defaults")
            return SyncStatus()

    def update(self, **changes) -> SyncStatus:
        current = self.get_status().model_dump()
        current.update(changes)
        status = SyncStatus.model_validate(current)
        self.kv_store.set(SYNC_STATUS_KEY, status.model_dump(mode="json"))
        self._notify(status)
        return status

    def record_sync(self, uploaded: int, downloaded: int) -> SyncStatus:
        return self.update(
            last_sync_at=self.clock(),
            last_upload_count=uploaded,
            last_download_count=downloaded,
            has_pending_changes=False,
            pending_reason=None,
            last_failed_at=None,
        )

    def mark_pending(self, reason: PendingReason = PendingReason.UNKNOWN) -> SyncStatus:
        return self.update(has_pending_changes=True, pending_reason=reason)

    def mark_sync_failed(self, reason: PendingReason = PendingReason.UNKNOWN) -> SyncStatus:
        return self.update(
            has_pending_changes=True,
            pending_reason=reason,
            last_failed_at=self.clock(),
        )

    def clear_pending(self) -> SyncStatus:
        return self.update(has_pending_changes=False, pending_reason=None, last_failed_at=None)

    def clear(self):
        self.kv_store.delete(SYNC_STATUS_KEY)
        self._notify(SyncStatus())

def classify_failure(error: BaseException) -> PendingReason:
    if isinstance(error, NotAuthenticatedError):
        return PendingReason.AUTH
    if isinstance(error, httpx.TransportError):
        return PendingReason.NETWORK
    return PendingReason.UNKNOWN

def derive_sync_state(is_authenticated: bool, auto_sync_enabled: bool, is_online: bool,
                      is_syncing: bool, status: SyncStatus) -> SyncState:
    """Estado exibido pelo indicador (ordem de prioridade importa)"""
    if not is_authenticated or not auto_sync_enabled:
        return SyncState.DISABLED
    if not is_online:
        return SyncState.OFFLINE
    if is_syncing:
        return SyncState.SYNCING
    if status.has_pending_changes:
        return SyncState.PENDING
    return SyncState.SYNCED

def format_relative_time(timestamp: Optional[datetime], now: Optional[datetime] = None) -> str:
    if not timestamp:
        return "Nunca sincronizado"

    now = now or utc_now()
    diff_seconds = int((now - ensure_utc(timestamp)).total_seconds())
    diff_minutes = diff_seconds // 60
    diff_hours = diff_minutes // 60
    diff_days = diff_hours // 24

    if diff_seconds < 60:
        return "Agora mesmo"
    if diff_minutes < 60:
        return f"há {diff_minutes} minuto{'s' if diff_minutes != 1 else ''}"
    if diff_hours < 24:
        return f"há {diff_hours} hora{'s' if diff_hours != 1 else ''}"
    if diff_days < 7:
        return f"há {diff_days} dia{'s' if diff_days != 1 else ''}"
    return ensure_utc(timestamp).strftime("%d/%m/%Y")
