import uuid
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Field, SQLModel

def utc_now():
    # Guardamos UTC 'naive' (colunas TIMESTAMP sem fuso no Postgres)
    return datetime.now(timezone.utc).replace(tzinfo=None)

def new_row_id() -> str:
    return str(uuid.uuid4())

class CloudAccount(SQLModel, table=True):
    __tablename__ = "cloud_accounts"

    id: str = Field(default_factory=new_row_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str  # Nunca armazenar senha em texto plano!
    access_token: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utc_now)

class CloudRow(SQLModel):
    """
    Base das linhas remotas. `id` é só detalhe de armazenamento do servidor;
    a identidade que vale é entity_id (gerado no dispositivo).
    """
    id: str = Field(default_factory=new_row_id, primary_key=True)
    user_id: str = Field(index=True)
    entity_id: str = Field(index=True)
    updated_at: datetime = Field(default_factory=utc_now)

class CloudBookmark(CloudRow, table=True):
    __tablename__ = "cloud_bookmarks"
    __table_args__ = (UniqueConstraint("user_id", "entity_id", name="uq_cloud_bookmarks_user_entity"),)

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    folder: str = Field(default="Uncategorized")
    favicon: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

class CloudTrash(CloudRow, table=True):
    __tablename__ = "cloud_trash"
    __table_args__ = (UniqueConstraint("user_id", "entity_id", name="uq_cloud_trash_user_entity"),)

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    folder: str = Field(default="Uncategorized")
    deleted_at: datetime
    retention_days: int = Field(default=30)
    original_created_at: datetime

class CloudShortcut(CloudRow, table=True):
    __tablename__ = "cloud_shortcuts"
    __table_args__ = (UniqueConstraint("user_id", "entity_id", name="uq_cloud_shortcuts_user_entity"),)

    name: str
    kind: str
    content_uri: Optional[str] = None
    file_type: Optional[str] = None
    mime_type: Optional[str] = None
    icon_type: str = Field(default="emoji")
    icon_value: str = Field(default="")
    phone_number: Optional[str] = None
    quick_messages: List[str] = Field(default_factory=list, sa_type=JSON)
    image_uris: List[str] = Field(default_factory=list, sa_type=JSON)
    auto_advance_interval: Optional[int] = None
    text_content: Optional[str] = None
    usage_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)

class CloudScheduledAction(CloudRow, table=True):
    __tablename__ = "cloud_scheduled_actions"
    __table_args__ = (UniqueConstraint("user_id", "entity_id", name="uq_cloud_scheduled_actions_user_entity"),)

    name: str
    description: Optional[str] = None
    destination: dict = Field(sa_type=JSON)
    trigger_time: datetime
    recurrence: str = Field(default="once")
    recurrence_anchor: Optional[dict] = Field(default=None, sa_type=JSON)
    enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)

class CloudDeletedEntity(CloudRow, table=True):
    """Tombstone: impede que outro dispositivo ressuscite a entidade"""
    __tablename__ = "cloud_deleted_entities"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_type", "entity_id", name="uq_cloud_deleted_user_type_entity"),
    )

    entity_type: str = Field(index=True)
    deleted_at: datetime = Field(default_factory=utc_now)

# --- MAPEAMENTO DE ROTAS ---
# Conecta o "nome na URL" à "Classe do Modelo"
COLLECTIONS_MAP = {
    "cloud_bookmarks": CloudBookmark,
    "cloud_trash": CloudTrash,
    "cloud_shortcuts": CloudShortcut,
    "cloud_scheduled_actions": CloudScheduledAction,
    "cloud_deleted_entities": CloudDeletedEntity,
}

CLOUD_TABLES = [CloudAccount.__table__] + [model.__table__ for model in COLLECTIONS_MAP.values()]
