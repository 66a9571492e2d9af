from __future__ import annotations

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from legalease.config import Settings

_settings = Settings()

# SQLite with WAL enabled
engine: Engine = create_engine(
    f"sqlite:///{_settings.database_path}", connect_args={"check_same_thread": False}
)


def init_db(bind: Engine | None = None) -> None:
    from legalease.models import chat_history  # noqa: F401 - registers the table

    target = bind or engine
    if target is engine:
        _settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    # Enable WAL
    with target.begin() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(target)
