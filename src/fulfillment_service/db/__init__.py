"""Database utilities."""

from __future__ import annotations

from fulfillment_service.db.engine import atomic, build_engine, get_engine, init_db, reset_engine, session_scope

__all__ = ["atomic", "build_engine", "get_engine", "init_db", "reset_engine", "session_scope"]
