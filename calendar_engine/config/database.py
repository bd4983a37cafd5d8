"""Database configuration and connection setup"""
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from calendar_engine.config.settings import get_settings


@lru_cache()
def get_engine():
    """Create the database engine with connection pooling"""
    settings = get_settings()
    kwargs = {"pool_pre_ping": True, "echo": False}
    if not settings.DATABASE_URL.startswith("sqlite"):
        kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    return create_engine(settings.DATABASE_URL, **kwargs)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine(), expire_on_commit=False)


def create_tables(engine=None):
    """Create the calendar tables if they do not exist"""
    from calendar_engine.models import Base

    Base.metadata.create_all(bind=engine or get_engine())


if __name__ == "__main__":
    create_tables()
