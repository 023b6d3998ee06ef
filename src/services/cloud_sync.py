"""
Motor de reconciliação (upload/download/tombstones) entre o banco local
e o armazenamento remoto.

Uso INTERNO: só o SyncManager (pontos de entrada protegidos) deve chamar
estas operações, para que todo sync passe pelo guard e pelo status.

Política de conflito: o id local é canônico; upload sempre faz upsert por
(user_id, entity_id); download só ADICIONA o que não existe localmente nem
está marcado como apagado. Nunca sobrescreve, nunca mescla campos.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Generic, Iterable, List, Set, TypeVar
import httpx
from sqlalchemy.exc import SQLAlchemyError
from src.data.deletion_tracker import DeletionTracker
from src.data.local_repository import LocalRepository
from src.models.base import SyncEntity, ensure_utc, parse_timestamp, utc_now
from src.models.bookmark import UNCATEGORIZED_FOLDER, Bookmark, TrashItem
from src.models.scheduled_action import (
    Recurrence, RecurrenceAnchor, ScheduledAction, is_remote_restorable,
    next_occurrence, parse_destination,
)
from src.models.shortcut import DORMANT, FileType, Shortcut, ShortcutKind, cloud_icon, requires_file_reference
from src.models.sync import EntityType, PendingReason, PhaseResult, SyncResult
from src.services.auth_service import AuthService, CloudUser
from src.services.errors import NotAuthenticatedError, RemoteStoreError, SyncError
from src.services.remote_store import COLLECTIONS, RemoteCollection, RemoteStore
from src.services.scheduler import NoOpScheduler, SchedulerPort
from src.services.sync_status import classify_failure

logger = logging.getLogger("CloudSync")

T = TypeVar("T", bound=SyncEntity)

# Ordem fixa das fases. Bookmark é a entidade pivô.
SYNC_ORDER = [EntityType.BOOKMARK, EntityType.TRASH, EntityType.SHORTCUT, EntityType.SCHEDULED_ACTION]
PIVOT_ENTITY = EntityType.BOOKMARK

# Falhas que afetam só um item (registradas e puladas)
ITEM_ERRORS = (RemoteStoreError, ValueError, KeyError, TypeError)

# Falhas que derrubam uma fase inteira (rede, servidor ou banco local)
PHASE_ERRORS = (SyncError, httpx.HTTPError, SQLAlchemyError)

# Status de upsert que representam mudança real no servidor
CHANGED = {"inserted", "updated"}

DeletedSet = Dict[EntityType, Set[str]]

def _iso(value: datetime) -> str:
    return ensure_utc(value).isoformat()

def _phase_failure(error: Exception) -> PhaseResult:
    return PhaseResult(success=False, error=str(error), reason=classify_failure(error))

# --- ADAPTADORES POR TIPO ---

class EntitySyncAdapter(Generic[T]):
    """Projeção local -> linha remota e reconstrução linha remota -> local"""
    entity_type: EntityType

    def __init__(self, repository: LocalRepository[T]):
        self.repository = repository

    @property
    def collection(self) -> RemoteCollection:
        return COLLECTIONS[self.entity_type]

    def to_remote(self, entity: T, user_id: str) -> dict:
        raise NotImplementedError

    def from_remote(self, row: dict, now: datetime) -> T:
        raise NotImplementedError

    def after_download(self, entities: List[T]):
        pass

    def after_remove(self, entity_ids: Iterable[str]):
        pass

class BookmarkAdapter(EntitySyncAdapter[Bookmark]):
    entity_type = EntityType.BOOKMARK

    def to_remote(self, entity: Bookmark, user_id: str) -> dict:
        return {
            "entity_id": entity.id,  # id local é canônico
            "user_id": user_id,
            "url": entity.url,
            "title": entity.title or None,
            "description": entity.description or None,
            "folder": entity.folder or UNCATEGORIZED_FOLDER,
            "favicon": None,
            "created_at": _iso(entity.created_at),
        }

    def from_remote(self, row: dict, now: datetime) -> Bookmark:
        folder = row.get("folder")
        return Bookmark(
            id=row["entity_id"],  # NUNCA o id da linha remota
            url=row["url"],
            title=row.get("title") or "",
            description=row.get("description") or "",
            folder=None if folder in (None, UNCATEGORIZED_FOLDER) else folder,
            created_at=parse_timestamp(row["created_at"]),
            is_shortlisted=False,
        )

class TrashAdapter(EntitySyncAdapter[TrashItem]):
    entity_type = EntityType.TRASH

    def to_remote(self, entity: TrashItem, user_id: str) -> dict:
        return {
            "entity_id": entity.id,
            "user_id": user_id,
            "url": entity.url,
            "title": entity.title or None,
            "description": entity.description or None,
            "folder": entity.folder or UNCATEGORIZED_FOLDER,
            "deleted_at": _iso(entity.deleted_at),
            "retention_days": entity.retention_days,
            "original_created_at": _iso(entity.created_at),
        }

    def from_remote(self, row: dict, now: datetime) -> TrashItem:
        folder = row.get("folder")
        return TrashItem(
            id=row["entity_id"],
            url=row["url"],
            title=row.get("title") or "",
            description=row.get("description") or "",
            folder=None if folder in (None, UNCATEGORIZED_FOLDER) else folder,
            created_at=parse_timestamp(row["original_created_at"]),
            deleted_at=parse_timestamp(row["deleted_at"]),
            retention_days=int(row["retention_days"]),
        )

class ShortcutAdapter(EntitySyncAdapter[Shortcut]):
    entity_type = EntityType.SHORTCUT

    def to_remote(self, entity: Shortcut, user_id: str) -> dict:
        # Thumbnail (binário) nunca sobe: vai o emoji do tipo
        icon_type, icon_value = cloud_icon(entity)
        return {
            "entity_id": entity.id,
            "user_id": user_id,
            "name": entity.name,
            "kind": ShortcutKind(entity.kind).value,
            "content_uri": entity.content_uri or None,
            "file_type": FileType(entity.file_type).value if entity.file_type else None,
            "mime_type": entity.mime_type,
            "icon_type": icon_type,
            "icon_value": icon_value,
            "phone_number": entity.phone_number,
            "quick_messages": list(entity.quick_messages or []),
            "image_uris": list(entity.image_uris or []),
            "auto_advance_interval": entity.auto_advance_interval,
            "text_content": entity.text_content,
            "usage_count": entity.usage_count,
            "created_at": _iso(entity.created_at),
        }

    def from_remote(self, row: dict, now: datetime) -> Shortcut:
        kind = ShortcutKind(row["kind"])
        return Shortcut(
            id=row["entity_id"],
            name=row["name"],
            kind=kind,
            content_uri=row.get("content_uri") or "",
            file_type=row.get("file_type"),
            mime_type=row.get("mime_type"),
            icon_type=row.get("icon_type") or "emoji",
            icon_value=row.get("icon_value") or "",
            phone_number=row.get("phone_number"),
            quick_messages=list(row.get("quick_messages") or []),
            image_uris=list(row.get("image_uris") or []),
            auto_advance_interval=row.get("auto_advance_interval"),
            text_content=row.get("text_content"),
            usage_count=int(row.get("usage_count") or 0),
            created_at=parse_timestamp(row["created_at"]),
            # O binário não veio junto: fica dormente até ser religado
            sync_state=DORMANT if requires_file_reference(kind) else None,
        )

class ScheduledActionAdapter(EntitySyncAdapter[ScheduledAction]):
    entity_type = EntityType.SCHEDULED_ACTION

    def __init__(self, repository: LocalRepository[ScheduledAction], scheduler: SchedulerPort = None):
        super().__init__(repository)
        self.scheduler = scheduler or NoOpScheduler()

    def to_remote(self, entity: ScheduledAction, user_id: str) -> dict:
        anchor = entity.get_anchor()
        return {
            "entity_id": entity.id,
            "user_id": user_id,
            "name": entity.name,
            "description": entity.description,
            "destination": entity.get_destination().model_dump(mode="json"),
            "trigger_time": _iso(entity.trigger_time),
            "recurrence": Recurrence(entity.recurrence).value,
            "recurrence_anchor": anchor.model_dump() if anchor else None,
            "enabled": entity.enabled,
            "created_at": _iso(entity.created_at),
        }

    def from_remote(self, row: dict, now: datetime) -> ScheduledAction:
        destination = parse_destination(row["destination"])
        recurrence = Recurrence(row.get("recurrence") or Recurrence.ONCE.value)
        anchor = RecurrenceAnchor.model_validate(row["recurrence_anchor"]) if row.get("recurrence_anchor") else None
        trigger_time = parse_timestamp(row["trigger_time"])
        enabled = bool(row.get("enabled", True))

        if trigger_time <= now:
            if recurrence == Recurrence.ONCE:
                enabled = False
            else:
                trigger_time = next_occurrence(trigger_time, recurrence, anchor, now)

        # Arquivo local não existe neste dispositivo
        if not is_remote_restorable(destination):
            enabled = False

        return ScheduledAction(
            id=row["entity_id"],
            name=row["name"],
            description=row.get("description"),
            destination=destination.model_dump(mode="json"),
            trigger_time=trigger_time,
            recurrence=recurrence,
            recurrence_anchor=anchor.model_dump() if anchor else None,
            enabled=enabled,
            created_at=parse_timestamp(row["created_at"]),
        )

    def after_download(self, entities: List[ScheduledAction]):
        # Melhor esforço: falha ao agendar não derruba o sync
        for action in entities:
            if not action.enabled:
                continue
            try:
                scheduled = self.scheduler.schedule_trigger(
                    action.id,
                    {"name": action.name, "description": action.description, "destination": action.destination},
                    action.trigger_time,
                    Recurrence(action.recurrence).value,
                )
                if not scheduled:
                    logger.info(f"Trigger not installed for scheduled action {action.id}")
            except Exception as e:
                logger.warning(f"Failed to schedule downloaded action {action.id}: {e}")

    def after_remove(self, entity_ids: Iterable[str]):
        for action_id in entity_ids:
            try:
                self.scheduler.cancel_trigger(action_id)
            except Exception as e:
                logger.warning(f"Failed to cancel trigger for {action_id}: {e}")

# --- MOTOR ---

class CloudSyncEngine:
    def __init__(self, remote: RemoteStore, auth: AuthService,
                 adapters: Dict[EntityType, EntitySyncAdapter],
                 deletion_tracker: DeletionTracker,
                 clock: Callable[[], datetime] = utc_now):
        self.remote = remote
        self.auth = auth
        self.adapters = adapters
        self.deletion_tracker = deletion_tracker
        self.clock = clock

    def _require_user(self) -> CloudUser:
        user = self.auth.get_current_user()
        if not user:
            raise NotAuthenticatedError()
        return user

    # --- FASES POR TIPO ---

    def upload(self, entity_type: EntityType) -> PhaseResult:
        """Upsert de todas as entidades locais do tipo. Falha por item não aborta o lote."""
        adapter = self.adapters[EntityType(entity_type)]
        try:
            user = self._require_user()
            uploaded = 0
            for entity in adapter.repository.list_all():
                try:
                    status = self.remote.upsert(adapter.collection, adapter.to_remote(entity, user.id))
                except ITEM_ERRORS as e:
                    logger.warning(f"Failed to upload {adapter.entity_type.value} {entity.id}: {e}")
                    continue
                if status in CHANGED:
                    uploaded += 1
            return PhaseResult(success=True, count=uploaded)
        except PHASE_ERRORS as e:
            logger.error(f"{adapter.entity_type.value} upload failed: {e}")
            return _phase_failure(e)

    def download(self, entity_type: EntityType, deleted_set: DeletedSet) -> PhaseResult:
        """Adiciona localmente o que falta, respeitando os tombstones."""
        entity_type = EntityType(entity_type)
        adapter = self.adapters[entity_type]
        try:
            user = self._require_user()
            rows = self.remote.select_all(adapter.collection, user.id)

            # Tombstones remotos + exclusões locais ainda não enviadas
            tombstoned = deleted_set.get(entity_type, set())
            excluded = set(tombstoned)
            excluded |= self.deletion_tracker.pending_ids()[entity_type]
            existing_ids = adapter.repository.get_ids()
            now = self.clock()

            new_entities = []
            resurrected = []
            for row in rows:
                entity_id = row.get("entity_id")
                if not entity_id:
                    logger.warning(f"Skipping remote {entity_type.value} row without entity_id")
                    continue
                # Linha viva com tombstone: um dispositivo atrasado a reenviou
                if entity_id in tombstoned:
                    resurrected.append(entity_id)
                # Checagem ANTES de construir: senão o tombstone ressuscita
                if entity_id in existing_ids or entity_id in excluded:
                    continue
                try:
                    entity = adapter.from_remote(row, now)
                except ITEM_ERRORS as e:
                    logger.warning(f"Failed to restore {entity_type.value} {entity_id}: {e}")
                    continue
                new_entities.append(entity)
                existing_ids.add(entity_id)

            adapter.repository.append_many(new_entities)
            adapter.after_download(new_entities)
            self._purge_tombstoned_rows(adapter, user.id, resurrected)
            return PhaseResult(success=True, count=len(new_entities))
        except PHASE_ERRORS as e:
            logger.error(f"{entity_type.value} download failed: {e}")
            return _phase_failure(e)

    def _purge_tombstoned_rows(self, adapter: EntitySyncAdapter, user_id: str, entity_ids: List[str]):
        """Apaga da nuvem as linhas que já têm tombstone. Falha fica para o próximo sync."""
        for entity_id in entity_ids:
            try:
                self.remote.delete(adapter.collection, user_id, entity_id)
            except (RemoteStoreError, httpx.HTTPError) as e:
                logger.warning(f"Failed to purge tombstoned {adapter.entity_type.value} {entity_id}: {e}")
                continue
            logger.info(f"Purged tombstoned {adapter.entity_type.value} {entity_id} from cloud")

    # --- EXCLUSÕES ---

    def upload_deletions(self) -> PhaseResult:
        """
        Para cada exclusão pendente: grava o tombstone remoto e apaga a linha.
        Só os itens processados com sucesso saem da fila local.
        """
        try:
            user = self._require_user()
            pending = self.deletion_tracker.get_all()
            processed = []
            try:
                for deletion in pending:
                    entity_type = EntityType(deletion.entity_type)
                    try:
                        self.remote.upsert(
                            RemoteCollection.DELETED_ENTITIES,
                            {
                                "user_id": user.id,
                                "entity_type": entity_type.value,
                                "entity_id": deletion.entity_id,
                                "deleted_at": _iso(deletion.recorded_at),
                            },
                            ignore_duplicates=True,
                        )
                        self.remote.delete(COLLECTIONS[entity_type], user.id, deletion.entity_id)
                    except (RemoteStoreError, httpx.HTTPError) as e:
                        logger.warning(f"Failed to upload deletion {entity_type.value}/{deletion.entity_id}: {e}")
                        continue
                    processed.append(deletion)
            finally:
                # Mesmo se o lote for interrompido, o que já foi enviado sai da fila
                self.deletion_tracker.clear(processed)

            failed = len(pending) - len(processed)
            if failed:
                return PhaseResult(
                    success=False,
                    count=len(processed),
                    error=f"{failed} deletion(s) still pending",
                    reason=PendingReason.PARTIAL,
                )
            return PhaseResult(success=True, count=len(processed))
        except PHASE_ERRORS as e:
            logger.error(f"Deletion upload failed: {e}")
            return _phase_failure(e)

    def fetch_deleted_entity_set(self) -> DeletedSet:
        """Tombstones remotos do usuário, por tipo. Erros sobem para o chamador."""
        user = self._require_user()
        deleted: DeletedSet = {entity_type: set() for entity_type in EntityType}
        for row in self.remote.select_all(RemoteCollection.DELETED_ENTITIES, user.id):
            try:
                deleted[EntityType(row["entity_type"])].add(row["entity_id"])
            except (KeyError, ValueError):
                logger.warning(f"Ignoring malformed tombstone row: {row}")
        return deleted

    def reconcile_local_deletions(self, deleted_set: DeletedSet) -> int:
        """Remove localmente o que outro dispositivo já apagou."""
        removed = 0
        for entity_type in SYNC_ORDER:
            adapter = self.adapters[entity_type]
            stale = deleted_set.get(entity_type, set()) & adapter.repository.get_ids()
            if stale:
                removed += adapter.repository.remove_ids(stale)
                adapter.after_remove(stale)
                logger.info(f"Removed {len(stale)} {entity_type.value}(s) deleted on another device")
        return removed

    # --- COMPOSTOS ---

    def _run_phase(self, entity_type: EntityType, run: Callable[[], PhaseResult]) -> PhaseResult:
        if entity_type == PIVOT_ENTITY:
            return run()
        # Tipos secundários nunca derrubam o ciclo
        try:
            return run()
        except Exception as e:
            logger.exception(f"Unexpected error in {entity_type.value} phase")
            return _phase_failure(e)

    def _upload_phase(self, result: SyncResult) -> bool:
        for entity_type in SYNC_ORDER:
            phase = self._run_phase(entity_type, lambda: self.upload(entity_type))
            if phase.success:
                result.uploaded += phase.count
                continue
            if entity_type == PIVOT_ENTITY:
                result.success = False
                result.error = phase.error
                result.pending_reason = phase.reason
                return False
            logger.error(f"{entity_type.value} upload failed but continuing: {phase.error}")
            result.warnings.append(f"{entity_type.value} upload: {phase.error}")

        deletions = self.upload_deletions()
        if not deletions.success:
            result.warnings.append(f"deletions: {deletions.error}")
        return True

    def _download_phase(self, result: SyncResult) -> bool:
        # O conjunto de tombstones PRECISA existir antes de qualquer download
        try:
            deleted_set = self.fetch_deleted_entity_set()
        except PHASE_ERRORS as e:
            logger.error(f"Failed to fetch deleted entities: {e}")
            result.success = False
            result.error = str(e)
            result.pending_reason = classify_failure(e)
            return False

        for entity_type in SYNC_ORDER:
            phase = self._run_phase(entity_type, lambda: self.download(entity_type, deleted_set))
            if phase.success:
                result.downloaded += phase.count
                continue
            if entity_type == PIVOT_ENTITY:
                result.success = False
                result.error = phase.error
                result.pending_reason = phase.reason
                return False
            logger.error(f"{entity_type.value} download failed but continuing: {phase.error}")
            result.warnings.append(f"{entity_type.value} download: {phase.error}")

        self.reconcile_local_deletions(deleted_set)
        return True

    def _finish(self, result: SyncResult) -> SyncResult:
        if result.success and result.warnings:
            result.pending_reason = PendingReason.PARTIAL
        return result

    def perform_bidirectional_sync(self) -> SyncResult:
        result = SyncResult(success=True)
        if self._upload_phase(result):
            self._download_phase(result)
        return self._finish(result)

    def perform_upload_only(self) -> SyncResult:
        result = SyncResult(success=True)
        self._upload_phase(result)
        return self._finish(result)

    def perform_download_only(self) -> SyncResult:
        result = SyncResult(success=True)
        self._download_phase(result)
        return self._finish(result)

    # --- MANUTENÇÃO DA NUVEM ---

    def clear_cloud_data(self) -> int:
        """Apaga todas as linhas do usuário na nuvem (incluindo tombstones)"""
        user = self._require_user()
        deleted = 0
        for collection in RemoteCollection:
            deleted += self.remote.delete_all(collection, user.id)
        return deleted

    def get_cloud_counts(self) -> Dict[EntityType, int]:
        user = self._require_user()
        return {
            entity_type: self.remote.count(COLLECTIONS[entity_type], user.id)
            for entity_type in SYNC_ORDER
        }
