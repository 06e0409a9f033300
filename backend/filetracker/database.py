"""Engine and session factory; each tracker collection is one table on it."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

DATABASE_URL = config.database_url()


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # request handlers and live-query listeners share the file across threads
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
