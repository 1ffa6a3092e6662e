#!/usr/bin/env python3
"""
Pole Registry — Apply SQL Migrations

Runs every migrations/*.sql file in name order against the database named
by the POLE_DB_* environment variables.  Each file runs in its own
transaction; the statements use IF NOT EXISTS, so re-running is safe.

Usage:
    python3 scripts/apply_migrations.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import psycopg2

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from pole_registry.db import DB_CONFIG  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

MIGRATIONS_DIR = ROOT / "migrations"


def main():
    files = sorted(MIGRATIONS_DIR.glob("*.sql"))
    if not files:
        logger.error("No migrations found in %s", MIGRATIONS_DIR)
        sys.exit(1)

    try:
        conn = psycopg2.connect(**DB_CONFIG)
    except psycopg2.OperationalError as e:
        logger.error("Cannot connect to %s@%s/%s: %s",
                     DB_CONFIG["user"], DB_CONFIG["host"], DB_CONFIG["dbname"], e)
        sys.exit(1)

    try:
        for path in files:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(path.read_text(encoding="utf-8"))
            logger.info("Applied %s", path.name)
    finally:
        conn.close()

    logger.info("%d migration(s) applied", len(files))


if __name__ == "__main__":
    main()
