"""
dustbin.core.store: SQLite persistence layer.

One ledger file per user, opened independently by the daemon and by every
CLI invocation. Uses raw sqlite3 (no ORM dependency).

Modules:
    models      Typed dataclasses for stored rows
    migrations  Ordered, idempotent schema upgrade steps
    ledger      Connection management, WAL mode, atomic upserts
"""
