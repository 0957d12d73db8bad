"""SQLAlchemy engine/session setup for usageWatch.

Provides:
- `engine`: SQLAlchemy Engine
- `SessionLocal`: session factory
- `Base`: Declarative base
- `get_db()`: FastAPI dependency yielding a session
- `dialect_insert()`: INSERT construct with ON CONFLICT support for the bound dialect
- `epoch_seconds()`: Unix-seconds expression for grouping timestamps into slices
"""
from sqlalchemy import BigInteger, cast, create_engine, func, literal_column
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from app.core.config import settings

# Create engine
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    future=True,
)

# Session factory
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class Base(DeclarativeBase):
    pass


def get_db():
    """FastAPI dependency that yields a DB session and ensures it's closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dialect_insert(db: Session, model):
    """Return an INSERT for `model` that supports on_conflict_* on this session's backend.

    PostgreSQL is the production target; SQLite is used by the test suite.
    """
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return pg_insert(model)
    if name == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"ON CONFLICT inserts are not supported for dialect {name!r}")


def epoch_seconds(db: Session, column):
    """Integer-valued Unix seconds of a DateTime column, for grouping in SQL.

    Constants are inlined so the expression renders identically in SELECT and
    GROUP BY.
    """
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return cast(func.floor(func.date_part(literal_column("'epoch'"), column)), BigInteger)
    if name == "sqlite":
        # naive values are stored as UTC text
        return cast(func.strftime(literal_column("'%s'"), column), BigInteger)
    raise NotImplementedError(f"epoch extraction is not supported for dialect {name!r}")
