# app/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from app.config import get_settings

settings = get_settings()


def make_engine(database_url: str) -> Engine:
    # For SQLite, `check_same_thread=False` is needed: batches are written
    # from request threads, fan-out workers and the background scheduler.
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
    )


engine = make_engine(settings.DATABASE_URL)
