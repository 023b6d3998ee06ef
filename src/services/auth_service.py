import logging
from typing import Optional
import httpx
from sqlmodel import SQLModel
from src.config import API_BASE_URL, TIMEOUT_SECONDS
from src.data.kv_store import KVStore

logger = logging.getLogger("AuthService")

SESSION_KEY = "auth_session"

class CloudUser(SQLModel):
    """Identidade opaca do usuário na nuvem"""
    id: str
    email: str = ""

class AuthService:
    """
    Autenticação contra o servidor central.
    A sessão (token + usuário) fica no KVStore e sobrevive a reinícios.
    """

    def __init__(self, kv_store: KVStore = None, client: httpx.Client = None):
        self.kv_store = kv_store or KVStore()
        self.client = client or httpx.Client(base_url=API_BASE_URL, timeout=TIMEOUT_SECONDS)

    def _start_session(self, endpoint: str, email: str, password: str) -> bool:
        try:
            response = self.client.post(endpoint, json={"email": email, "password": password})
        except httpx.TransportError as e:
            logger.error(f"Auth request failed: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"Auth rejected ({response.status_code}) for {email}")
            return False

        data = response.json()
        self.kv_store.set(SESSION_KEY, {
            "access_token": data["access_token"],
            "user": data["user"],
        })
        logger.info(f"Signed in as {data['user'].get('email', email)}")
        return True

    def sign_up(self, email: str, password: str) -> bool:
        return self._start_session("/auth/signup", email, password)

    def authenticate(self, email: str, password: str) -> bool:
        return self._start_session("/auth/login", email, password)

    def get_current_user(self) -> Optional[CloudUser]:
        session = self.kv_store.get(SESSION_KEY)
        if not session or not session.get("user"):
            return None
        return CloudUser.model_validate(session["user"])

    def get_access_token(self) -> Optional[str]:
        session = self.kv_store.get(SESSION_KEY)
        return session.get("access_token") if session else None

    def logout(self):
        self.kv_store.delete(SESSION_KEY)

    def delete_account(self) -> bool:
        """Apaga a conta e TODOS os dados do usuário na nuvem"""
        token = self.get_access_token()
        if not token:
            return False
        response = self.client.delete("/auth/account", headers={"Authorization": f"Bearer {token}"})
        if response.status_code != 200:
            logger.error(f"Account deletion failed: {response.status_code}")
            return False
        self.logout()
        return True
