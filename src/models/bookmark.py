from datetime import datetime, timedelta
from typing import Optional
from sqlmodel import Field
from src.config import TRASH_RETENTION_DAYS
from .base import SyncEntity, ensure_utc, utc_now

# Pasta usada no servidor quando o link local não tem tag
UNCATEGORIZED_FOLDER = "Uncategorized"

class Bookmark(SyncEntity, table=True):
    __tablename__ = "bookmarks"

    url: str = Field(index=True)
    title: str = Field(default="")
    description: str = Field(default="")

    # Tag/pasta. None = sem categoria
    folder: Optional[str] = Field(default=None, index=True)
    is_shortlisted: bool = Field(default=False)

class TrashItem(SyncEntity, table=True):
    """
    Link na lixeira (soft delete). Depois de criado tem identidade própria,
    independente do Bookmark que o originou.
    `created_at` guarda a criação ORIGINAL do link.
    """
    __tablename__ = "trash_items"

    url: str
    title: str = Field(default="")
    description: str = Field(default="")
    folder: Optional[str] = Field(default=None)

    deleted_at: datetime = Field(default_factory=utc_now)
    retention_days: int = Field(default=TRASH_RETENTION_DAYS)

    @property
    def expires_at(self) -> datetime:
        return ensure_utc(self.deleted_at) + timedelta(days=self.retention_days)

    def is_restorable(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) < self.expires_at

    @classmethod
    def from_bookmark(cls, bookmark: Bookmark) -> "TrashItem":
        # Novo id: a lixeira não compartilha identidade com o bookmark
        return cls(
            url=bookmark.url,
            title=bookmark.title,
            description=bookmark.description,
            folder=bookmark.folder,
            created_at=bookmark.created_at,
        )
