from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base


def build_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for *database_url* with pool settings suited to its backend."""

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        options = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # Every session must see the same in-memory database.
            options["poolclass"] = StaticPool
        return create_engine(url, echo=echo, future=True, **options)

    # pool_pre_ping: verify connections before using them
    return create_engine(
        url,
        echo=echo,
        future=True,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_schema(engine: Engine) -> None:
    """Create missing tables; raises when the database is unreachable."""

    Base.metadata.create_all(engine)
