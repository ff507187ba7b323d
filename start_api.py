#!/usr/bin/env python3
"""
Container entrypoint: wait for the database, migrate to head, optionally seed the
demo tenant, then hand the process over to uvicorn.
"""
import logging
import os
import sys

from alembic import command
from alembic.config import Config

from app.core.config import settings
from wait_for_db import wait_for_db

logger = logging.getLogger("start_api")


def migrate() -> None:
    cfg = Config(os.path.join(os.path.dirname(os.path.abspath(__file__)), "alembic.ini"))
    command.upgrade(cfg, "head")


def seed() -> None:
    # Engine created after migrations so the seed never sees a half-built schema
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from app.seed import run as run_seed

    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
    try:
        run_seed(sessionmaker(autocommit=False, autoflush=False, bind=engine)())
    finally:
        engine.dispose()


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    wait_for_db(settings.DATABASE_URL, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
    migrate()
    if os.getenv("SEED_DEMO_DATA", "true").lower() in ("1", "true", "yes"):
        seed()
    else:
        logger.info("SEED_DEMO_DATA is off; skipping demo data")

    port = os.getenv("PORT", "8000")
    logger.info("Starting %s on port %s", settings.APP_NAME, port)
    os.execv(
        sys.executable,
        [sys.executable, "-m", "uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port],
    )


if __name__ == "__main__":
    main()
