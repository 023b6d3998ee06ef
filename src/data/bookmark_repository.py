from typing import List, Optional
from sqlmodel import or_, select
from src.models.bookmark import Bookmark, TrashItem
from src.models.base import utc_now
from src.models.sync import EntityType
from src.data.local_repository import LocalRepository

class BookmarkRepository(LocalRepository[Bookmark]):
    entity_type = EntityType.BOOKMARK

    def __init__(self, engine=None, deletion_tracker=None):
        super().__init__(Bookmark, engine, deletion_tracker)

    def add_link(self, url: str, title: str = "", folder: Optional[str] = None) -> Bookmark:
        """
        Salva um link novo. Cada chamada gera um entity_id novo:
        a identidade nunca é derivada da URL.
        """
        return self.save(Bookmark(url=url, title=title or url, folder=folder))

    def search(self, query_text: str = "") -> List[Bookmark]:
        """Busca por título ou URL"""
        with self._session() as session:
            statement = select(Bookmark)
            if query_text:
                search_pattern = f"%{query_text}%"
                statement = statement.where(
                    or_(
                        Bookmark.title.like(search_pattern),
                        Bookmark.url.like(search_pattern),
                    )
                )
            statement = statement.order_by(Bookmark.created_at.desc())
            return list(session.exec(statement).all())

class TrashRepository(LocalRepository[TrashItem]):
    entity_type = EntityType.TRASH

    def __init__(self, engine=None, deletion_tracker=None):
        super().__init__(TrashItem, engine, deletion_tracker)

    def move_to_trash(self, bookmark: Bookmark, bookmarks: BookmarkRepository) -> TrashItem:
        # O bookmark sai da lista principal: isso é exclusão definitiva dele
        item = self.save(TrashItem.from_bookmark(bookmark))
        bookmarks.delete_permanently(bookmark.id)
        return item

    def purge_expired(self) -> int:
        """Apaga definitivamente os itens fora do prazo de retenção"""
        now = utc_now()
        expired = [item.id for item in self.list_all() if not item.is_restorable(now)]
        for item_id in expired:
            self.delete_permanently(item_id)
        return len(expired)
