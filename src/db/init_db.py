from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import make_url

from src.db.models import Base
from src.db.session import get_database_url, get_engine


def init_db() -> str:
    """Create all tables (idempotent). Returns the database URL with the password masked."""
    url = get_database_url()
    parsed = make_url(url)
    if parsed.drivername.startswith("sqlite") and parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=get_engine())
    return parsed.render_as_string(hide_password=True)
