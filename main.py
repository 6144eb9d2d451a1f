"""
authsync Entry Point.

Bootstraps the entire dependency graph via constructor injection,
initialises the local SQLite schema, resolves the current session and
reports it.  Every subsystem is wired here -- no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys
from pathlib import Path

from authsync.config import get_config
from authsync.database import DatabaseManager
from authsync.logger import StructuredLogger, get_logger
from authsync.models.state import SessionSnapshot
from authsync.schema import initialize_schema
from authsync.services import create_services


async def main() -> SessionSnapshot:
    """Application entry point -- wire dependencies and resolve the session."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting authsync...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = await DatabaseManager.connect(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_STORE_PATH),
        logger=StructuredLogger(name="database"),
    )

    # DatabaseManager.close() is idempotent; this covers unclean exits.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)
    store = services["session_store"]

    # ------------------------------------------------------------------
    # 5. Resolve the session
    # ------------------------------------------------------------------
    try:
        snapshot = await store.start()
        logger.info(
            "Session resolved: %s", snapshot.phase,
            extra={
                "user_id": snapshot.session.subject_id if snapshot.session else "none",
                "profile_error": snapshot.profile_error or "none",
            },
        )
        return snapshot
    finally:
        await store.close()
        db.close()
        logger.info("authsync shut down.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
