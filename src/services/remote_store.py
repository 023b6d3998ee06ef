import logging
from enum import Enum
from typing import Any, Dict, List, Optional
import httpx
from src.config import API_BASE_URL, TIMEOUT_SECONDS
from src.models.sync import EntityType
from src.services.auth_service import AuthService
from src.services.errors import NotAuthenticatedError, RemoteStoreError

logger = logging.getLogger("RemoteStore")

class RemoteCollection(str, Enum):
    BOOKMARKS = "cloud_bookmarks"
    TRASH = "cloud_trash"
    SHORTCUTS = "cloud_shortcuts"
    SCHEDULED_ACTIONS = "cloud_scheduled_actions"
    DELETED_ENTITIES = "cloud_deleted_entities"

# Coleção de cada tipo sincronizável
COLLECTIONS = {
    EntityType.BOOKMARK: RemoteCollection.BOOKMARKS,
    EntityType.TRASH: RemoteCollection.TRASH,
    EntityType.SHORTCUT: RemoteCollection.SHORTCUTS,
    EntityType.SCHEDULED_ACTION: RemoteCollection.SCHEDULED_ACTIONS,
}

class RemoteStore:
    """
    Cliente do armazenamento remoto (servidor central).
    Toda linha é escopada por user_id; a chave única é (user_id, entity_id)
    ou (user_id, entity_type, entity_id) para os tombstones.
    """

    def __init__(self, auth: AuthService, client: httpx.Client = None):
        self.auth = auth
        self.client = client or httpx.Client(base_url=API_BASE_URL, timeout=TIMEOUT_SECONDS)

    def _headers(self) -> Dict[str, str]:
        token = self.auth.get_access_token()
        if not token:
            raise NotAuthenticatedError()
        return {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, url: str, **kwargs) -> Any:
        # Erros de transporte (offline/timeout) sobem como httpx.TransportError
        response = self.client.request(method, url, headers=self._headers(), **kwargs)
        if response.status_code == 401:
            raise NotAuthenticatedError()
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise RemoteStoreError(f"{method} {url} failed: {detail}", response.status_code)
        return response.json()

    def upsert(self, collection: RemoteCollection, row: Dict[str, Any], ignore_duplicates: bool = False) -> str:
        """Insere ou atualiza pela chave única. Retorna inserted|updated|unchanged|ignored"""
        result = self._request(
            "POST",
            f"/rest/{RemoteCollection(collection).value}",
            params={"ignore_duplicates": str(ignore_duplicates).lower()},
            json=row,
        )
        return result.get("status", "")

    def select_all(self, collection: RemoteCollection, user_id: str) -> List[Dict[str, Any]]:
        result = self._request(
            "GET",
            f"/rest/{RemoteCollection(collection).value}",
            params={"user_id": user_id},
        )
        return result.get("rows", [])

    def delete(self, collection: RemoteCollection, user_id: str, entity_id: str,
               entity_type: Optional[str] = None) -> int:
        params = {"user_id": user_id, "entity_id": entity_id}
        if entity_type:
            params["entity_type"] = entity_type
        result = self._request("DELETE", f"/rest/{RemoteCollection(collection).value}", params=params)
        return result.get("deleted", 0)

    def delete_all(self, collection: RemoteCollection, user_id: str) -> int:
        result = self._request(
            "DELETE",
            f"/rest/{RemoteCollection(collection).value}",
            params={"user_id": user_id},
        )
        return result.get("deleted", 0)

    def count(self, collection: RemoteCollection, user_id: str) -> int:
        result = self._request(
            "GET",
            f"/rest/{RemoteCollection(collection).value}/count",
            params={"user_id": user_id},
        )
        return result.get("count", 0)
