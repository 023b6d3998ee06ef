from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Literal, Optional, Union, assert_never
from pydantic import BaseModel, Field as PydanticField, TypeAdapter
from sqlalchemy import JSON, String
from sqlmodel import Field
from .base import SyncEntity, ensure_utc

class Recurrence(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    YEARLY = "yearly"

class RecurrenceAnchor(BaseModel):
    """
    Âncora da recorrência (horário fixo).
    day_of_week segue datetime.weekday(): 0 = segunda ... 6 = domingo.
    """
    hour: int = PydanticField(ge=0, le=23)
    minute: int = PydanticField(default=0, ge=0, le=59)
    day_of_week: Optional[int] = PydanticField(default=None, ge=0, le=6)
    month: Optional[int] = PydanticField(default=None, ge=1, le=12)
    day: Optional[int] = PydanticField(default=None, ge=1, le=31)

# --- Destinos (união discriminada pelo campo "type") ---

class FileDestination(BaseModel):
    type: Literal["file"] = "file"
    uri: str
    name: Optional[str] = None
    mime_type: Optional[str] = None

class UrlDestination(BaseModel):
    type: Literal["url"] = "url"
    uri: str
    name: Optional[str] = None

class ContactDestination(BaseModel):
    type: Literal["contact"] = "contact"
    phone_number: str
    contact_name: Optional[str] = None
    is_whatsapp: bool = False
    quick_message: Optional[str] = None

Destination = Annotated[
    Union[FileDestination, UrlDestination, ContactDestination],
    PydanticField(discriminator="type"),
]

_destination_adapter = TypeAdapter(Destination)

def parse_destination(data) -> Union[FileDestination, UrlDestination, ContactDestination]:
    return _destination_adapter.validate_python(data)

def is_remote_restorable(destination) -> bool:
    """Arquivos locais não existem em outro dispositivo."""
    match destination:
        case FileDestination():
            return False
        case UrlDestination() | ContactDestination():
            return True
        case _ as unreachable:
            assert_never(unreachable)

class ScheduledAction(SyncEntity, table=True):
    __tablename__ = "scheduled_actions"

    name: str
    description: Optional[str] = Field(default=None)

    # Serializado como dict (ver parse_destination)
    destination: dict = Field(sa_type=JSON)

    trigger_time: datetime
    recurrence: Recurrence = Field(default=Recurrence.ONCE, sa_type=String)
    recurrence_anchor: Optional[dict] = Field(default=None, sa_type=JSON)
    enabled: bool = Field(default=True)

    def get_destination(self):
        return parse_destination(self.destination)

    def get_anchor(self) -> Optional[RecurrenceAnchor]:
        if not self.recurrence_anchor:
            return None
        return RecurrenceAnchor.model_validate(self.recurrence_anchor)

# --- Cálculo da próxima ocorrência ---

_INTERVALS = {
    Recurrence.DAILY: timedelta(days=1),
    Recurrence.WEEKLY: timedelta(weeks=1),
}

def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29/02 em ano não bissexto
        return value.replace(year=value.year + years, day=28)

def _anchored_next(trigger_time: datetime, recurrence: Recurrence,
                   anchor: RecurrenceAnchor, now: datetime) -> datetime:
    base = now.astimezone(trigger_time.tzinfo).replace(
        hour=anchor.hour, minute=anchor.minute, second=0, microsecond=0
    )
    match recurrence:
        case Recurrence.DAILY:
            candidate = base
            if candidate <= now:
                candidate += timedelta(days=1)
            return candidate
        case Recurrence.WEEKLY:
            weekday = anchor.day_of_week if anchor.day_of_week is not None else trigger_time.weekday()
            candidate = base + timedelta(days=(weekday - base.weekday()) % 7)
            if candidate <= now:
                candidate += timedelta(weeks=1)
            return candidate
        case Recurrence.YEARLY:
            month = anchor.month or trigger_time.month
            day = anchor.day or trigger_time.day
            # Até 8 anos à frente cobre o caso de 29/02
            for year in range(base.year, base.year + 9):
                try:
                    candidate = base.replace(year=year, month=month, day=day)
                except ValueError:
                    continue
                if candidate > now:
                    return candidate
            raise ValueError(f"Âncora anual inválida: {month}/{day}")
        case Recurrence.ONCE:
            raise ValueError("Ação única não tem próxima ocorrência")
        case _ as unreachable:
            assert_never(unreachable)

def next_occurrence(trigger_time: datetime, recurrence: Recurrence,
                    anchor: Optional[RecurrenceAnchor], now: datetime) -> Optional[datetime]:
    """
    Primeira ocorrência estritamente depois de `now`.
    Retorna None para ações únicas que já passaram.
    """
    trigger_time = ensure_utc(trigger_time)
    now = ensure_utc(now)
    recurrence = Recurrence(recurrence)

    if trigger_time > now:
        return trigger_time
    if recurrence == Recurrence.ONCE:
        return None
    if anchor is not None:
        return _anchored_next(trigger_time, recurrence, anchor, now)

    if recurrence == Recurrence.YEARLY:
        years = 1
        while _add_years(trigger_time, years) <= now:
            years += 1
        return _add_years(trigger_time, years)

    interval = _INTERVALS[recurrence]
    steps = (now - trigger_time) // interval + 1
    return trigger_time + steps * interval
