from typing import List
from src.models.shortcut import Shortcut
from src.models.sync import EntityType
from src.data.local_repository import LocalRepository

class ShortcutRepository(LocalRepository[Shortcut]):
    entity_type = EntityType.SHORTCUT

    def __init__(self, engine=None, deletion_tracker=None):
        super().__init__(Shortcut, engine, deletion_tracker)

    def list_dormant(self) -> List[Shortcut]:
        return [s for s in self.list_all() if s.is_dormant]

    def reconnect_file(self, shortcut_id: str, content_uri: str) -> bool:
        """Religa um atalho dormente a um arquivo local e limpa o estado dormant"""
        shortcut = self.get_by_id(shortcut_id)
        if not shortcut:
            return False
        shortcut.content_uri = content_uri
        shortcut.sync_state = None
        self.save(shortcut)
        return True
