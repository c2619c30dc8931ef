from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build the engine for the document store.

    PostgreSQL connections get explicit UTF-8 encoding for emoji support;
    in-memory SQLite shares one connection so every session sees the same data.
    """
    db_url_lower = database_url.lower()
    is_postgres = "postgresql" in db_url_lower or "postgres" in db_url_lower
    is_sqlite = db_url_lower.startswith("sqlite")

    connect_args = {}
    engine_kwargs = {}
    if is_postgres:
        # Set client encoding to UTF-8 for PostgreSQL connections
        connect_args["client_encoding"] = "UTF8"
    if is_sqlite:
        connect_args["check_same_thread"] = False
        if ":memory:" in db_url_lower or db_url_lower in ("sqlite://", "sqlite:///"):
            engine_kwargs["poolclass"] = StaticPool

    return create_engine(
        database_url,
        pool_pre_ping=not is_sqlite,
        connect_args=connect_args,
        echo=echo,
        **engine_kwargs,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables. Models must be imported before this runs."""
    from donchat import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
