from sqlmodel import SQLModel, create_engine
from .config import settings


def normalize_db_url(db_url: str) -> str:
    # Render иногда выдаёт postgres:// — меняем на новую схему драйвера
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+psycopg://", 1)
    if db_url.startswith("postgresql://") and "+psycopg" not in db_url:
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return db_url


def make_engine(db_url: str):
    db_url = normalize_db_url(db_url)
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False})
    return create_engine(db_url, pool_pre_ping=True)


engine = make_engine(settings.DATABASE_URL)


def init_db(bind=None) -> None:
    from . import models  # noqa: F401  регистрирует таблицы в metadata

    SQLModel.metadata.create_all(bind or engine)
