from __future__ import annotations

from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from proofgate.config import DATABASE_URL


# -------------------------------------------------------------------
# Lazy engine/session creation
# -------------------------------------------------------------------

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _get_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine

    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL is not set")

    _engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        future=True,
    )
    init_schema(_engine)
    return _engine


def _get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is not None:
        return _SessionLocal

    engine = _get_engine()
    _SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
    )
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    SessionLocal = _get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# -------------------------------------------------------------------
# Schema
# -------------------------------------------------------------------
# Portable between PostgreSQL and SQLite: timestamps are ISO-8601 TEXT,
# JSON payloads are TEXT.

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS eligibility (
      user_id         TEXT NOT NULL,
      action_type     TEXT NOT NULL,
      scope_key       TEXT NOT NULL,
      state           TEXT NOT NULL DEFAULT 'eligible',
      proof_tx_hash   TEXT UNIQUE,
      result_payload  TEXT,
      created_at      TEXT NOT NULL,
      completed_at    TEXT,
      PRIMARY KEY (user_id, action_type, scope_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS blocked_user (
      user_id     TEXT PRIMARY KEY,
      reason      TEXT,
      blocked_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS claim_campaign (
      project_id    TEXT PRIMARY KEY,
      name          TEXT NOT NULL,
      token_amount  TEXT NOT NULL,
      featured_at   TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS claim_payout (
      user_id           TEXT NOT NULL,
      project_id        TEXT NOT NULL,
      wallet_address    TEXT NOT NULL,
      token_amount      TEXT NOT NULL,
      status            TEXT NOT NULL,
      transfer_tx_hash  TEXT,
      last_error        TEXT,
      updated_at        TEXT NOT NULL,
      PRIMARY KEY (user_id, project_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS feedback (
      feedback_id     TEXT PRIMARY KEY,
      user_id         TEXT NOT NULL,
      wallet_address  TEXT NOT NULL,
      message         TEXT NOT NULL,
      proof_tx_hash   TEXT NOT NULL UNIQUE,
      status          TEXT NOT NULL DEFAULT 'unread',
      created_at      TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prediction_candidate (
      round_id      TEXT NOT NULL,
      candidate_id  TEXT NOT NULL,
      name          TEXT NOT NULL,
      PRIMARY KEY (round_id, candidate_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prediction_tally (
      round_id      TEXT NOT NULL,
      candidate_id  TEXT NOT NULL,
      count         INTEGER NOT NULL DEFAULT 0,
      PRIMARY KEY (round_id, candidate_id)
    )
    """,
]


def init_schema(engine: Engine) -> None:
    with engine.begin() as conn:
        for ddl in SCHEMA:
            conn.execute(text(ddl))
