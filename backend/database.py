import os
from dotenv import load_dotenv
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from backend.models import CLOUD_TABLES

# Carrega as variáveis do arquivo .env
load_dotenv()

# Recupera a URL ou usa um valor default (útil para debug)
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("A variável de ambiente DATABASE_URL não está definida!")

SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

# Criação do Engine (PostgreSQL em produção, SQLite/aiosqlite em testes)
engine = create_async_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
    # SQLite: sem pool, cada sessão abre a própria conexão
    poolclass=NullPool if DATABASE_URL.startswith("sqlite") else None,
)

async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

async def init_db():
    """
    Cria as tabelas na inicialização.
    O SQLModel traduz os modelos Python para tabelas SQL compatíveis com Postgres.
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all, tables=CLOUD_TABLES)

async def get_session() -> AsyncSession:
    """Injeção de dependência para rotas FastAPI"""
    async with async_session() as session:
        yield session
