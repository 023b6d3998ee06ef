import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel

# Função auxiliar para timestamps UTC
def utc_now():
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """O SQLite devolve datetimes 'naive'; tratamos sempre como UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def parse_timestamp(value) -> datetime:
    """Converte ISO8601 (vindo do servidor) em datetime UTC"""
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))

def new_entity_id() -> str:
    return str(uuid.uuid4())

class SyncEntity(SQLModel):
    """
    Classe Base para todas as entidades sincronizáveis.

    O `id` local é o entity_id canônico: gerado no dispositivo na criação,
    imutável, e a ÚNICA identidade que cruza a fronteira dispositivo/nuvem.
    O servidor pode ter o próprio id de linha, mas ele nunca é usado aqui.
    """
    # Identificador UUID v4 (NUNCA usar Autoincrement)
    id: str = Field(default_factory=new_entity_id, primary_key=True)

    created_at: datetime = Field(default_factory=utc_now)
