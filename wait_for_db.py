import logging
import os
import time
from urllib.parse import urlparse

import psycopg2

logger = logging.getLogger("wait_for_db")


def _connect_kwargs(database_url: str) -> dict:
    # SQLAlchemy URLs carry the driver (postgresql+psycopg2://); psycopg2 wants the bare form
    url = database_url.replace("postgresql+psycopg2://", "postgresql://").replace("postgres://", "postgresql://")
    p = urlparse(url)
    return {
        "host": p.hostname or "db",
        "port": p.port or 5432,
        "user": p.username or "slotbook",
        "password": p.password or "slotbook",
        "dbname": (p.path or "/slotbook").lstrip("/") or "slotbook",
    }


def wait_for_db(database_url: str, timeout_s: int = 60) -> None:
    """Block until Postgres accepts connections. Other backends (SQLite) return at once."""
    if not database_url.startswith(("postgres://", "postgresql")):
        logger.info("Not a Postgres URL; nothing to wait for")
        return

    kwargs = _connect_kwargs(database_url)
    logger.info("Waiting for Postgres at %s:%s db=%s (timeout=%ss)", kwargs["host"], kwargs["port"], kwargs["dbname"], timeout_s)
    deadline = time.monotonic() + timeout_s
    while True:
        try:
            psycopg2.connect(connect_timeout=5, **kwargs).close()
            logger.info("Postgres is ready")
            return
        except psycopg2.OperationalError as e:
            if time.monotonic() > deadline:
                logger.error("Timed out waiting for Postgres: %s", e)
                raise
            time.sleep(1)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[wait_for_db] %(message)s")
    url = os.getenv("DATABASE_URL")
    if not url:
        raise SystemExit("DATABASE_URL is not set")
    wait_for_db(url, int(os.getenv("DB_WAIT_TIMEOUT", "60")))
