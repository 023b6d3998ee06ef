import logging
from typing import Callable, ClassVar, Dict, Generic, Iterable, List, Optional, Set, Type, TypeVar
from sqlmodel import Session, col, delete, select
from src.data.db_context import get_engine
from src.models.base import SyncEntity
from src.models.sync import EntityType

logger = logging.getLogger("LocalStore")

T = TypeVar("T", bound=SyncEntity)

class LocalRepository(Generic[T]):
    """
    Classe base das coleções locais sincronizáveis.
    Semântica de leitura total / escrita em lote, com notificação de mudança
    depois de cada escrita (a UI se inscreve para recarregar as listas).
    """
    entity_type: ClassVar[EntityType]

    # Inscritos por tabela, compartilhados entre instâncias
    _listeners: ClassVar[Dict[str, List[Callable[[str], None]]]] = {}

    def __init__(self, model_type: Type[T], engine=None, deletion_tracker=None):
        self.model_type = model_type
        self.table_name = model_type.__tablename__
        self.engine = engine or get_engine()
        self.deletion_tracker = deletion_tracker

    def _session(self) -> Session:
        # expire_on_commit=False: os objetos continuam legíveis depois do commit
        return Session(self.engine, expire_on_commit=False)

    # --- NOTIFICAÇÕES ---

    @classmethod
    def subscribe(cls, table_name: str, callback: Callable[[str], None]) -> Callable[[], None]:
        listeners = LocalRepository._listeners.setdefault(table_name, [])
        listeners.append(callback)

        def unsubscribe():
            if callback in listeners:
                listeners.remove(callback)
        return unsubscribe

    def _notify_change(self):
        for callback in list(LocalRepository._listeners.get(self.table_name, [])):
            try:
                callback(self.table_name)
            except Exception as e:
                logger.warning(f"Change listener failed for {self.table_name}: {e}")

    # --- LEITURA ---

    def list_all(self) -> List[T]:
        with self._session() as session:
            statement = select(self.model_type).order_by(self.model_type.created_at)
            return list(session.exec(statement).all())

    def get_by_id(self, entity_id: str) -> Optional[T]:
        with self._session() as session:
            return session.get(self.model_type, entity_id)

    def get_ids(self) -> Set[str]:
        with self._session() as session:
            return set(session.exec(select(self.model_type.id)).all())

    def count(self) -> int:
        return len(self.get_ids())

    # --- ESCRITA EM LOTE ---

    def append_many(self, entities: Iterable[T]) -> int:
        """Insere novas entidades em uma única transação"""
        entities = list(entities)
        if not entities:
            return 0
        with self._session() as session:
            session.add_all(entities)
            session.commit()
        self._notify_change()
        return len(entities)

    def replace_all(self, entities: Iterable[T]):
        """Substitui a coleção inteira (write-all)"""
        entities = list(entities)
        with self._session() as session:
            session.exec(delete(self.model_type))
            session.add_all(entities)
            session.commit()
        self._notify_change()

    def remove_ids(self, ids: Iterable[str]) -> int:
        """Remove localmente SEM registrar tombstone (usado pelo próprio sync)"""
        ids = list(ids)
        if not ids:
            return 0
        with self._session() as session:
            result = session.exec(delete(self.model_type).where(col(self.model_type.id).in_(ids)))
            session.commit()
            removed = result.rowcount
        if removed:
            self._notify_change()
        return removed

    # --- MÉTODOS CRUD ---

    def save(self, entity: T) -> T:
        with self._session() as session:
            # merge: UPDATE se o id existir, INSERT se não
            merged_entity = session.merge(entity)
            session.commit()
            session.refresh(merged_entity)
        self._notify_change()
        return merged_entity

    def delete_permanently(self, entity_id: str) -> bool:
        """
        Exclusão definitiva. Registra o tombstone NA HORA, para que o
        próximo sync propague a exclusão e impeça a 'ressurreição'.
        """
        with self._session() as session:
            entity = session.get(self.model_type, entity_id)
            if not entity:
                return False
            session.delete(entity)
            session.commit()

        if self.deletion_tracker is not None:
            self.deletion_tracker.record(self.entity_type, entity_id)
        self._notify_change()
        return True
