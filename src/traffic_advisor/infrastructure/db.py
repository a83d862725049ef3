from __future__ import annotations
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from traffic_advisor.config import get_settings


class Base(DeclarativeBase):
    pass


def _dsn() -> str:
    return get_settings().database_url


def _connect_args(url: str) -> dict:
    # SQLite connections are shared between the API worker threads
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


engine = create_engine(_dsn(), pool_pre_ping=True, connect_args=_connect_args(_dsn()))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

def override_engine(e):  # test helper
    global engine, SessionLocal
    engine = e
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session():
    """Return a new session bound to the current engine (honours override_engine)."""
    return SessionLocal()


def healthcheck() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        return True


def get_db():
    """FastAPI dependency: one session per request."""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
