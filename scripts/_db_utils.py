from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.rukem.db import build_engine, build_sessionmaker


@contextmanager
def script_session(db_url: str):
    """
    One-off session for release/seed scripts, without building the Flask app.
    Commits on success, rolls back on error, always disposes the engine.
    """
    # A script needs one connection, not the web pool.
    engine = build_engine(db_url, **({"pool_size": 1, "max_overflow": 0} if db_url.startswith("postgres") else {}))
    s: Session = build_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
