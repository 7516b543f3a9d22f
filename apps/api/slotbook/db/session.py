from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from slotbook.core.config import settings


def build_engine(database_url: str, **kwargs):
    """Create an engine with per-backend connect args."""
    connect_args = {}
    backend = make_url(database_url).get_backend_name()
    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
    elif backend == "sqlite":
        # Request handlers, background tasks and the worker share the engine
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 15
    return create_engine(
        database_url, pool_pre_ping=True, connect_args=connect_args, **kwargs
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
