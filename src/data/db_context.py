import os
from functools import lru_cache
from sqlalchemy import event
from sqlmodel import SQLModel, create_engine
from src.config import DATABASE_NAME
from src.models.bookmark import Bookmark, TrashItem
from src.models.shortcut import Shortcut
from src.models.scheduled_action import ScheduledAction
from src.models.sync import PendingDeletion

def get_db_path() -> str:
    """
    Define o caminho correto do banco de dados dependendo do OS.
    No Android o app só pode escrever no armazenamento interno.
    """
    if "ANDROID_ARGUMENT" in os.environ:
        storage_path = os.getenv("FLET_APP_STORAGE_DATA", "/data/data/app.onetap.shortcuts/files")
        return os.path.join(storage_path, DATABASE_NAME)

    # Desenvolvimento Desktop
    return DATABASE_NAME

def _apply_pragmas(dbapi_connection, connection_record):
    # --- Otimizações para UI fluida ---
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA temp_store=MEMORY;")
    cursor.close()

def _local_tables():
    return [
        model.__table__
        for model in (Bookmark, TrashItem, Shortcut, ScheduledAction, PendingDeletion)
    ]

def create_local_engine(db_path: str = None):
    """Engine SQLModel do banco local. Cria as tabelas se não existirem."""
    db_path = db_path or get_db_path()
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False}  # Necessário para Flet (threads)
    )
    event.listen(engine, "connect", _apply_pragmas)

    # Só as tabelas do dispositivo (o metadata pode conter as do servidor)
    SQLModel.metadata.create_all(engine, tables=_local_tables())
    return engine

@lru_cache(maxsize=1)
def get_engine():
    """Engine padrão do app (um por processo)"""
    return create_local_engine()
