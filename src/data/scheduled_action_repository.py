from typing import List
from src.models.scheduled_action import ScheduledAction
from src.models.sync import EntityType
from src.data.local_repository import LocalRepository

class ScheduledActionRepository(LocalRepository[ScheduledAction]):
    entity_type = EntityType.SCHEDULED_ACTION

    def __init__(self, engine=None, deletion_tracker=None):
        super().__init__(ScheduledAction, engine, deletion_tracker)

    def list_enabled(self) -> List[ScheduledAction]:
        return [a for a in self.list_all() if a.enabled]
