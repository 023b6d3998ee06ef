"""
Deletion Tracker

Guarda no banco local as exclusões definitivas ainda não enviadas à nuvem.
No próximo sync cada registro:
  1. vira tombstone em cloud_deleted_entities (evita ressurreição)
  2. apaga a linha correspondente na nuvem
"""
import logging
from typing import Dict, Iterable, List, Set
from sqlmodel import Session, select
from src.data.db_context import get_engine
from src.models.sync import EntityType, PendingDeletion

logger = logging.getLogger("DeletionTracker")

class DeletionTracker:
    def __init__(self, engine=None):
        self.engine = engine or get_engine()

    def record(self, entity_type: EntityType, entity_id: str):
        """Registra uma exclusão (idempotente para o mesmo par tipo/id)"""
        entity_type = EntityType(entity_type).value
        with Session(self.engine, expire_on_commit=False) as session:
            if session.get(PendingDeletion, (entity_type, entity_id)):
                return
            session.add(PendingDeletion(entity_type=entity_type, entity_id=entity_id))
            session.commit()
        logger.info(f"Recorded deletion: {entity_type}/{entity_id}")

    def get_all(self) -> List[PendingDeletion]:
        with Session(self.engine, expire_on_commit=False) as session:
            statement = select(PendingDeletion).order_by(PendingDeletion.recorded_at)
            return list(session.exec(statement).all())

    def pending_ids(self) -> Dict[EntityType, Set[str]]:
        pending = {entity_type: set() for entity_type in EntityType}
        for deletion in self.get_all():
            pending[EntityType(deletion.entity_type)].add(deletion.entity_id)
        return pending

    def clear_all(self):
        with Session(self.engine) as session:
            for deletion in session.exec(select(PendingDeletion)).all():
                session.delete(deletion)
            session.commit()
        logger.info("Cleared pending deletions")

    def clear(self, deletions: Iterable[PendingDeletion]):
        """Remove apenas os pares informados (os demais continuam pendentes)"""
        keys = {d.key() for d in deletions}
        if not keys:
            return
        with Session(self.engine) as session:
            for key in keys:
                deletion = session.get(PendingDeletion, key)
                if deletion:
                    session.delete(deletion)
            session.commit()
