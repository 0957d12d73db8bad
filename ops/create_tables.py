"""Create database tables for usageWatch.

This script imports the ORM models and calls `Base.metadata.create_all()` on the
configured DATABASE_URL. Handy for local SQLite databases; production
PostgreSQL goes through Alembic (`alembic upgrade head`).

Usage
-----
$ python -m ops.create_tables
"""
from __future__ import annotations

from app.core.db import engine, Base  # engine is built from env in app.core.config
# Import models so SQLAlchemy knows about them before create_all()
from app.core import models  # noqa: F401  (imported for side effects)


def main() -> None:
    with engine.begin() as conn:
        Base.metadata.create_all(bind=conn)
    print(f"[usageWatch] Tables created (or already exist): {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    main()
