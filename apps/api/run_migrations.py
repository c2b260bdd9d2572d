#!/usr/bin/env python3
"""Database bootstrap: run Alembic migrations before the API or worker starts.

- Always run `alembic upgrade head` on startup.
- If migrations fail, fail fast (don't start with an unknown schema).
- create_all from the models is only a fallback for an EMPTY database, and
  is followed by `alembic stamp head` so later upgrades still apply.
"""

import os
import sys
import time

from dotenv import load_dotenv

load_dotenv()


def _get_alembic_config(url=None):
    """Load Alembic config for programmatic migrations."""
    from alembic.config import Config

    here = os.path.dirname(os.path.abspath(__file__))
    cfg = Config(os.path.join(here, "alembic.ini"))
    if url:
        cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    return cfg


def alembic_upgrade_head(url=None) -> None:
    """Apply all pending migrations."""
    from alembic import command

    command.upgrade(_get_alembic_config(url), "head")


def alembic_stamp_head(url=None) -> None:
    """Stamp alembic_version as head (no schema changes)."""
    from alembic import command

    command.stamp(_get_alembic_config(url), "head")


def create_schema_directly() -> None:
    """Fallback: create the task sync tables from the models, then stamp head."""
    from sqlalchemy import inspect, text
    from core.database import Base, engine
    import models  # noqa: F401

    if inspect(engine).has_table("task_templates"):
        with engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM task_templates")).scalar()
        if count:
            raise RuntimeError(
                f"Refusing direct schema creation on non-empty DB (task_templates={count}). "
                f"Run Alembic migrations instead."
            )

    print("Creating schema directly from models...")
    Base.metadata.create_all(engine, checkfirst=True)
    alembic_stamp_head()
    print("Schema created successfully!")


def wait_for_db(max_retries: int = 30) -> bool:
    from core.database import check_db_connection

    for attempt in range(1, max_retries + 1):
        if check_db_connection():
            return True
        print(f"Database is unavailable - sleeping (attempt {attempt}/{max_retries})")
        time.sleep(1)
    return False


def main() -> int:
    print("Waiting for database to be ready...")
    if not wait_for_db():
        print("ERROR: Database is not ready after maximum retries")
        return 1
    print("Database is ready!")

    try:
        alembic_upgrade_head()
        print("Migrations completed successfully!")
        return 0
    except Exception as e:
        print(f"ERROR: Alembic upgrade failed: {e}")

    try:
        create_schema_directly()
    except Exception as e:
        print(f"ERROR: Schema bootstrap failed: {e}")
        return 1
    print("Schema bootstrap completed via create_all fallback.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
