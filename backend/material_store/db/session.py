from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import create_engine
from material_store.core.config import settings

# PostgreSQL in production, falls back to a local SQLite file for development
DATABASE_URL = settings.DATABASE_URL or "sqlite:///./material_store.db"

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
