"""
Database engine and session management for the SQL ledger backend.
"""
from sqlalchemy.engine import Engine
from sqlmodel import create_engine, SQLModel
from apps.core.settings import settings


def build_engine(database_url: str = None, echo: bool = None) -> Engine:
    """Create an engine for the ledger database."""
    url = database_url or settings.database_url
    kwargs = {
        "echo": settings.database_echo if echo is None else echo,
        "pool_pre_ping": True,  # Verify connections before use
    }
    if url.startswith("sqlite"):
        # Writers wait on the database lock instead of failing immediately
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs["pool_recycle"] = 300
    return create_engine(url, **kwargs)


def create_db_and_tables(engine: Engine):
    """Create database tables."""
    # Register table models on the metadata
    import apps.db.models  # noqa: F401
    SQLModel.metadata.create_all(engine)

