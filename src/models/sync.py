from datetime import datetime
from enum import Enum
from typing import List, Optional
from sqlalchemy import String
from sqlmodel import Field, SQLModel
from .base import utc_now

class EntityType(str, Enum):
    """Tipos sincronizáveis. A ordem aqui é a ordem das fases do sync."""
    BOOKMARK = "bookmark"
    TRASH = "trash"
    SHORTCUT = "shortcut"
    SCHEDULED_ACTION = "scheduled_action"

class SyncTrigger(str, Enum):
    MANUAL = "manual"
    DAILY_AUTO = "daily_auto"
    RECOVERY_UPLOAD = "recovery_upload"
    RECOVERY_DOWNLOAD = "recovery_download"

class PendingReason(str, Enum):
    """Motivo interno de pendência (debug, não exibido na UI)"""
    NETWORK = "network"
    AUTH = "auth"
    PARTIAL = "partial"
    UNKNOWN = "unknown"

class SyncState(str, Enum):
    """Estado exibido pelo indicador de sync"""
    SYNCED = "synced"
    PENDING = "pending"
    SYNCING = "syncing"
    OFFLINE = "offline"
    DISABLED = "disabled"

class PendingDeletion(SQLModel, table=True):
    """
    Tombstone local: entidade apagada permanentemente no dispositivo e
    ainda não propagada para a nuvem.
    """
    __tablename__ = "pending_deletions"

    entity_type: str = Field(primary_key=True, sa_type=String)
    entity_id: str = Field(primary_key=True)
    recorded_at: datetime = Field(default_factory=utc_now)

    def key(self):
        return (EntityType(self.entity_type).value, self.entity_id)

class SyncStatus(SQLModel):
    """Último estado conhecido do sync (persistido no KVStore)"""
    last_sync_at: Optional[datetime] = None
    last_upload_count: int = 0
    last_download_count: int = 0
    has_pending_changes: bool = False
    pending_reason: Optional[PendingReason] = None
    last_failed_at: Optional[datetime] = None

class PhaseResult(SQLModel):
    """Resultado de uma fase (upload/download/deleções) de um tipo"""
    success: bool
    count: int = 0
    error: Optional[str] = None
    reason: Optional[PendingReason] = None

class SyncResult(SQLModel):
    """Retorno dos pontos de entrada protegidos (guarded_*)"""
    success: bool
    uploaded: int = 0
    downloaded: int = 0
    error: Optional[str] = None
    blocked: bool = False
    block_reason: Optional[str] = None
    # Fases secundárias que falharam sem abortar o ciclo
    warnings: List[str] = Field(default_factory=list)
    pending_reason: Optional[PendingReason] = None
