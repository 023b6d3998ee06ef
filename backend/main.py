import hashlib
import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

# --- IMPORTAÇÕES DO BACKEND ---
from backend.database import get_session, init_db
from backend.models import COLLECTIONS_MAP, CloudAccount, CloudDeletedEntity, utc_now

logger = logging.getLogger("CloudServer")

# Campos controlados pelo servidor (nunca vêm do cliente)
SERVER_FIELDS = {"id", "updated_at"}

# Em produção, este SALT deve vir de variáveis de ambiente seguras
AUTH_SALT = os.getenv("AUTH_SALT", "onetap_cloud_salt_dev")

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield

app = FastAPI(title="OneTap - Servidor de Sync", lifespan=lifespan)

class Credentials(BaseModel):
    email: str
    password: str

def _hash_password(password: str) -> str:
    """Gera hash SHA256 com salt para armazenamento seguro"""
    salted = f"{password}{AUTH_SALT}"
    return hashlib.sha256(salted.encode()).hexdigest()

def _session_payload(account: CloudAccount) -> Dict[str, Any]:
    return {
        "access_token": account.access_token,
        "user": {"id": account.id, "email": account.email},
    }

async def current_account(
    authorization: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> CloudAccount:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    token = authorization.removeprefix("Bearer ").strip()
    result = await session.exec(select(CloudAccount).where(CloudAccount.access_token == token))
    account = result.first()
    if not account:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return account

def _resolve_model(collection: str):
    if collection not in COLLECTIONS_MAP:
        raise HTTPException(status_code=404, detail=f"Coleção '{collection}' desconhecida.")
    return COLLECTIONS_MAP[collection]

def _check_owner(account: CloudAccount, user_id: Optional[str]):
    # Equivalente ao RLS: cada usuário só enxerga as próprias linhas
    if user_id != account.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user_id does not match session")

def _normalize(value):
    """Datetimes são guardados como UTC 'naive'"""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def _unique_filter(model, user_id: str, row):
    statement = select(model).where(model.user_id == user_id, model.entity_id == row.entity_id)
    if model is CloudDeletedEntity:
        statement = statement.where(model.entity_type == row.entity_type)
    return statement

@app.get("/")
async def root():
    return {
        "status": "online",
        "collections": list(COLLECTIONS_MAP.keys()),
        "time": datetime.now(timezone.utc).isoformat(),
    }

# --- AUTENTICAÇÃO ---

@app.post("/auth/signup")
async def signup(credentials: Credentials, session: AsyncSession = Depends(get_session)):
    result = await session.exec(select(CloudAccount).where(CloudAccount.email == credentials.email))
    if result.first():
        raise HTTPException(status_code=409, detail="E-mail já cadastrado.")

    account = CloudAccount(
        email=credentials.email,
        password_hash=_hash_password(credentials.password),
        access_token=secrets.token_urlsafe(32),
    )
    session.add(account)
    await session.commit()
    return _session_payload(account)

@app.post("/auth/login")
async def login(credentials: Credentials, session: AsyncSession = Depends(get_session)):
    result = await session.exec(select(CloudAccount).where(CloudAccount.email == credentials.email))
    account = result.first()
    if not account or account.password_hash != _hash_password(credentials.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="E-mail ou senha inválidos.")
    return _session_payload(account)

@app.get("/auth/user")
async def get_user(account: CloudAccount = Depends(current_account)):
    return {"id": account.id, "email": account.email}

@app.delete("/auth/account")
async def delete_account(
    account: CloudAccount = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    """Apaga a conta e todas as linhas do usuário em todas as coleções"""
    deleted = 0
    for model in COLLECTIONS_MAP.values():
        rows = (await session.exec(select(model).where(model.user_id == account.id))).all()
        for row in rows:
            await session.delete(row)
        deleted += len(rows)

    account_row = await session.get(CloudAccount, account.id)
    if account_row:
        await session.delete(account_row)
    await session.commit()
    logger.info(f"Deleted account {account.id} ({deleted} rows)")
    return {"status": "deleted", "rows": deleted}

# --- ENDPOINT GENÉRICO DE UPSERT ---

@app.post("/rest/{collection}")
async def upsert_row(
    collection: str,
    payload: Dict[str, Any],
    ignore_duplicates: bool = False,
    account: CloudAccount = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    """
    Upsert pela chave única (user_id, entity_id) - ou (user_id, entity_type,
    entity_id) para tombstones. NUNCA por conteúdo (ex: URL).
    Retorna inserted | updated | unchanged | ignored.
    """
    ModelClass = _resolve_model(collection)
    _check_owner(account, payload.get("user_id"))

    data = {key: value for key, value in payload.items() if key not in SERVER_FIELDS}
    try:
        candidate = ModelClass.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    # Só os campos enviados pelo cliente contam para a comparação
    fields = [key for key in data if key in ModelClass.model_fields]
    for key in fields:
        setattr(candidate, key, _normalize(getattr(candidate, key)))

    existing = (await session.exec(_unique_filter(ModelClass, account.id, candidate))).first()

    if existing:
        if ignore_duplicates:
            return {"status": "ignored"}

        changed = False
        for key in fields:
            new_value = getattr(candidate, key)
            if getattr(existing, key) != new_value:
                setattr(existing, key, new_value)
                changed = True
        if not changed:
            return {"status": "unchanged"}

        existing.updated_at = utc_now()
        session.add(existing)
        await session.commit()
        return {"status": "updated"}

    session.add(candidate)
    try:
        await session.commit()
    except IntegrityError:
        # Outra requisição inseriu a mesma chave no meio do caminho
        await session.rollback()
        raise HTTPException(status_code=409, detail="Duplicate entity")
    return {"status": "inserted"}

# --- ENDPOINTS GENÉRICOS DE LEITURA ---

@app.get("/rest/{collection}")
async def select_rows(
    collection: str,
    user_id: str,
    account: CloudAccount = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    ModelClass = _resolve_model(collection)
    _check_owner(account, user_id)

    result = await session.exec(select(ModelClass).where(ModelClass.user_id == user_id))
    return {
        "collection": collection,
        "rows": [record.model_dump(mode="json") for record in result.all()],
    }

@app.get("/rest/{collection}/count")
async def count_rows(
    collection: str,
    user_id: str,
    account: CloudAccount = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    ModelClass = _resolve_model(collection)
    _check_owner(account, user_id)

    statement = select(func.count()).select_from(ModelClass).where(ModelClass.user_id == user_id)
    total = (await session.exec(statement)).one()
    return {"collection": collection, "count": total}

# --- ENDPOINT GENÉRICO DE EXCLUSÃO ---

@app.delete("/rest/{collection}")
async def delete_rows(
    collection: str,
    user_id: str,
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    account: CloudAccount = Depends(current_account),
    session: AsyncSession = Depends(get_session),
):
    """Sem entity_id apaga todas as linhas do usuário na coleção"""
    ModelClass = _resolve_model(collection)
    _check_owner(account, user_id)

    statement = select(ModelClass).where(ModelClass.user_id == user_id)
    if entity_id:
        statement = statement.where(ModelClass.entity_id == entity_id)
    if entity_type and ModelClass is CloudDeletedEntity:
        statement = statement.where(ModelClass.entity_type == entity_type)

    rows = (await session.exec(statement)).all()
    for row in rows:
        await session.delete(row)
    await session.commit()
    return {"collection": collection, "deleted": len(rows)}
