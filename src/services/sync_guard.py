"""
Sync Guard (controle de admissão).

Impede sincronizações sobrepostas ou frequentes demais. Um único
SyncCoordinator por processo é dono do estado (timestamps por gatilho e a
flag de 'em andamento') e é compartilhado com quem dispara o sync.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, Optional
from src.config import AUTO_SYNC_MIN_INTERVAL_HOURS
from src.models.base import ensure_utc, utc_now
from src.models.sync import SyncTrigger

logger = logging.getLogger("SyncGuard")

SYNC_IN_PROGRESS = "sync_in_progress"

@dataclass
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after: Optional[timedelta] = None

@dataclass
class SyncTicket:
    """Resultado da admissão; success decide como o sync é encerrado"""
    trigger: SyncTrigger
    decision: GuardDecision
    success: bool = False

    @property
    def admitted(self) -> bool:
        return self.decision.allowed

def format_wait(remaining: timedelta) -> str:
    total_minutes = max(1, int(remaining.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"

class SyncCoordinator:
    def __init__(self, min_auto_interval: timedelta = None,
                 clock: Callable[[], datetime] = utc_now,
                 last_sync_at: Optional[datetime] = None):
        self.min_auto_interval = min_auto_interval or timedelta(hours=AUTO_SYNC_MIN_INTERVAL_HOURS)
        self.clock = clock
        self._lock = threading.Lock()
        self._in_progress = False
        self._current_trigger: Optional[SyncTrigger] = None
        self._last_attempt: Dict[SyncTrigger, datetime] = {}
        self._last_success: Optional[datetime] = ensure_utc(last_sync_at)

    @property
    def is_in_progress(self) -> bool:
        return self._in_progress

    @property
    def current_trigger(self) -> Optional[SyncTrigger]:
        return self._current_trigger

    def _last_activity(self) -> Optional[datetime]:
        moments = list(self._last_attempt.values())
        if self._last_success:
            moments.append(self._last_success)
        return max(moments) if moments else None

    def validate_sync_attempt(self, trigger: SyncTrigger) -> GuardDecision:
        trigger = SyncTrigger(trigger)

        # 1. Concorrência: vale para TODOS os gatilhos
        if self._in_progress:
            return GuardDecision(False, SYNC_IN_PROGRESS)

        # 2. Timing: só o automático diário respeita o intervalo mínimo
        if trigger == SyncTrigger.DAILY_AUTO:
            last = self._last_activity()
            if last is not None:
                elapsed = self.clock() - last
                if elapsed < self.min_auto_interval:
                    remaining = self.min_auto_interval - elapsed
                    return GuardDecision(
                        False,
                        f"too_soon: next auto-sync allowed in {format_wait(remaining)}",
                        remaining,
                    )

        return GuardDecision(True)

    def mark_sync_started(self, trigger: SyncTrigger):
        trigger = SyncTrigger(trigger)
        self._in_progress = True
        self._current_trigger = trigger
        self._last_attempt[trigger] = self.clock()
        logger.info(f"Sync started ({trigger.value})")

    def mark_sync_completed(self, trigger: SyncTrigger, success: bool):
        trigger = SyncTrigger(trigger)
        if success:
            self._last_success = self.clock()
        self._in_progress = False
        self._current_trigger = None
        logger.info(f"Sync completed ({trigger.value}) success={success}")

    @contextmanager
    def admit(self, trigger: SyncTrigger) -> Iterator[SyncTicket]:
        """
        Valida e marca o início de forma atômica (ticket.admitted).
        O encerramento roda em TODO caminho de saída, inclusive exceções.
        """
        trigger = SyncTrigger(trigger)
        with self._lock:
            decision = self.validate_sync_attempt(trigger)
            if decision.allowed:
                self.mark_sync_started(trigger)

        ticket = SyncTicket(trigger=trigger, decision=decision)
        if not decision.allowed:
            logger.info(f"Sync blocked ({trigger.value}): {decision.reason}")
            yield ticket
            return

        try:
            yield ticket
        finally:
            with self._lock:
                self.mark_sync_completed(trigger, ticket.success)

    def reset(self):
        """Esquece o histórico (sign-out). Não interrompe um sync em andamento."""
        with self._lock:
            self._last_attempt.clear()
            self._last_success = None
