import uuid
from datetime import datetime, timezone

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession

from sefimap.config import settings

# Tables gérées par le backend hébergé (aucune création côté application)
Base = declarative_base()

# Vues statistiques en lecture seule, hors de Base.metadata
views_metadata = MetaData()

# Créer le moteur async
engine = create_async_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)

# Session async
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# Dépendance FastAPI pour obtenir la session
async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
