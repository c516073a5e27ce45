# storefront/data/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from storefront.utils.settings import DATABASE_URL


class Base(DeclarativeBase):
    pass


def build_engine(url: str = DATABASE_URL):
    # sqlite is only used locally and in tests, sessions cross worker threads there
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
