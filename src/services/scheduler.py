import logging
from datetime import datetime
from typing import Any, Dict, Protocol

logger = logging.getLogger("Scheduler")

class SchedulerPort(Protocol):
    """
    Capacidade opcional de agendar alarmes nativos.
    Implementações devolvem False em vez de lançar quando não conseguem.
    """

    def schedule_trigger(self, action_id: str, payload: Dict[str, Any],
                         trigger_time: datetime, recurrence: str) -> bool: ...

    def cancel_trigger(self, action_id: str) -> bool: ...

class NoOpScheduler:
    """Plataformas sem alarmes nativos (desktop/web)"""

    def schedule_trigger(self, action_id, payload, trigger_time, recurrence) -> bool:
        logger.debug(f"No native scheduler; skipping trigger for {action_id}")
        return False

    def cancel_trigger(self, action_id) -> bool:
        return False
