from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from practice_core.core.config import settings


def create_db_engine(url: str) -> Engine:
    """Build an engine with per-backend connect options."""
    parsed = make_url(url)
    backend = parsed.get_backend_name()
    connect_args: dict = {}
    kwargs: dict = {"pool_pre_ping": True}

    if backend.startswith("postgresql"):
        connect_args["options"] = "-c timezone=utc"
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        if parsed.database in (None, "", ":memory:"):
            # One shared connection, otherwise each checkout sees an empty DB
            kwargs["poolclass"] = StaticPool

    return create_engine(url, connect_args=connect_args, **kwargs)


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = create_session_factory(engine)
