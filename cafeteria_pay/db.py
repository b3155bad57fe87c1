from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base for ALL models
Base = declarative_base()


# -----------------------
# SQLAlchemy Engine
# -----------------------
def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build the engine for ``DATABASE_URL``.

    Postgres (psycopg) in production; SQLite is accepted for local runs and
    tests, an in-memory SQLite database is shared across threads via StaticPool.
    """
    url = database_url.strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Please set a valid database URL.")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, future=True, echo=echo, **kwargs)

    return create_engine(
        url,
        future=True,
        echo=echo,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)

