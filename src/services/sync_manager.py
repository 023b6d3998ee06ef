import logging
from typing import Callable, Dict, Optional
import httpx

from src.config import API_BASE_URL, LOG_LEVEL, TIMEOUT_SECONDS
from src.data.db_context import get_engine
from src.data.deletion_tracker import DeletionTracker
from src.data.kv_store import KVStore
# Importe seus repositórios aqui
from src.data.bookmark_repository import BookmarkRepository, TrashRepository
from src.data.scheduled_action_repository import ScheduledActionRepository
from src.data.shortcut_repository import ShortcutRepository
from src.models.sync import EntityType, PendingReason, SyncResult, SyncTrigger
from src.services.auth_service import AuthService
from src.services.cloud_sync import (
    BookmarkAdapter, CloudSyncEngine, ScheduledActionAdapter, ShortcutAdapter, TrashAdapter,
)
from src.services.errors import SyncError
from src.services.remote_store import RemoteStore
from src.services.scheduler import NoOpScheduler, SchedulerPort
from src.services.sync_guard import SyncCoordinator
from src.services.sync_status import SyncStatusRecorder, classify_failure

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("SyncManager")

ROUTINE_TRIGGERS = (SyncTrigger.MANUAL, SyncTrigger.DAILY_AUTO)

class SyncManager:
    """
    Pontos de entrada protegidos do sync: guarded_sync, guarded_upload e
    guarded_download. São os ÚNICOS que acionam o motor de reconciliação;
    cada um passa pelo guard (admissão) e registra o status.
    """

    def __init__(self, engine=None, kv_store: KVStore = None, client: httpx.Client = None,
                 auth: AuthService = None, remote: RemoteStore = None,
                 coordinator: SyncCoordinator = None, scheduler: SchedulerPort = None,
                 status: SyncStatusRecorder = None):
        self.db_engine = engine or get_engine()
        self.kv_store = kv_store or KVStore()
        self.client = client or httpx.Client(base_url=API_BASE_URL, timeout=TIMEOUT_SECONDS)

        self.auth = auth or AuthService(self.kv_store, self.client)
        self.remote = remote or RemoteStore(self.auth, self.client)
        self.status = status or SyncStatusRecorder(self.kv_store)
        self.deletion_tracker = DeletionTracker(self.db_engine)

        # Um coordenador por processo; o último sync persistido alimenta o timing guard
        self.coordinator = coordinator or SyncCoordinator(last_sync_at=self.status.get_status().last_sync_at)

        # LISTA DE REPOSITÓRIOS PARA SYNC (a ordem das fases fica no motor)
        self.repositories = {
            EntityType.BOOKMARK: BookmarkRepository(self.db_engine, self.deletion_tracker),
            EntityType.TRASH: TrashRepository(self.db_engine, self.deletion_tracker),
            EntityType.SHORTCUT: ShortcutRepository(self.db_engine, self.deletion_tracker),
            EntityType.SCHEDULED_ACTION: ScheduledActionRepository(self.db_engine, self.deletion_tracker),
        }
        scheduler = scheduler or NoOpScheduler()
        self._engine = CloudSyncEngine(
            self.remote,
            self.auth,
            {
                EntityType.BOOKMARK: BookmarkAdapter(self.repositories[EntityType.BOOKMARK]),
                EntityType.TRASH: TrashAdapter(self.repositories[EntityType.TRASH]),
                EntityType.SHORTCUT: ShortcutAdapter(self.repositories[EntityType.SHORTCUT]),
                EntityType.SCHEDULED_ACTION: ScheduledActionAdapter(
                    self.repositories[EntityType.SCHEDULED_ACTION], scheduler
                ),
            },
            self.deletion_tracker,
            clock=self.coordinator.clock,
        )

    # --- PONTOS DE ENTRADA PROTEGIDOS ---

    def guarded_sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncResult:
        """Sync bidirecional de rotina (manual ou automático diário)"""
        trigger = SyncTrigger(trigger)
        if trigger not in ROUTINE_TRIGGERS:
            raise ValueError(f"guarded_sync only accepts manual/daily_auto, got {trigger.value}")
        return self._run_guarded(trigger, self._engine.perform_bidirectional_sync)

    def guarded_upload(self) -> SyncResult:
        """Recuperação: só envia (inclui exclusões pendentes)"""
        return self._run_guarded(SyncTrigger.RECOVERY_UPLOAD, self._engine.perform_upload_only)

    def guarded_download(self) -> SyncResult:
        """Recuperação: só baixa (respeita tombstones)"""
        return self._run_guarded(SyncTrigger.RECOVERY_DOWNLOAD, self._engine.perform_download_only)

    def _run_guarded(self, trigger: SyncTrigger, operation: Callable[[], SyncResult]) -> SyncResult:
        with self.coordinator.admit(trigger) as ticket:
            if not ticket.admitted:
                return SyncResult(success=False, blocked=True, block_reason=ticket.decision.reason)

            try:
                result = operation()
            except Exception as e:
                logger.exception(f"Sync Error: {e}")
                result = SyncResult(success=False, error=str(e), pending_reason=classify_failure(e))

            ticket.success = result.success
            self._record_outcome(result)

        if result.success:
            logger.info(f"Sync OK ({trigger.value}): ▲{result.uploaded} ▼{result.downloaded}")
        else:
            logger.error(f"Sync failed ({trigger.value}): {result.error}")
        return result

    def _record_outcome(self, result: SyncResult):
        try:
            if result.success:
                self.status.record_sync(result.uploaded, result.downloaded)
                if result.pending_reason == PendingReason.PARTIAL:
                    self.status.mark_pending(PendingReason.PARTIAL)
            else:
                self.status.mark_sync_failed(result.pending_reason or PendingReason.UNKNOWN)
        except Exception as e:
            # Falha ao gravar status não pode mascarar o resultado do sync
            logger.warning(f"Failed to record sync status: {e}")

    # --- MANUTENÇÃO ---

    @property
    def is_syncing(self) -> bool:
        return self.coordinator.is_in_progress

    def clear_cloud_data(self) -> bool:
        """Apaga os dados do usuário na nuvem (não mexe no dispositivo)"""
        try:
            deleted = self._engine.clear_cloud_data()
        except (SyncError, httpx.HTTPError) as e:
            logger.error(f"Clear failed: {e}")
            return False
        logger.info(f"Cleared {deleted} cloud row(s)")
        return True

    def get_cloud_counts(self) -> Optional[Dict[EntityType, int]]:
        try:
            return self._engine.get_cloud_counts()
        except (SyncError, httpx.HTTPError) as e:
            logger.error(f"Count failed: {e}")
            return None

    def sign_out(self):
        """Encerra a sessão e limpa o status/histórico de sync"""
        self.auth.logout()
        self.status.clear()
        self.coordinator.reset()

    def close(self):
        self.client.close()
