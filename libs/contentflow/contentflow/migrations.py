"""SQL migrations: discovery, checksums and one-shot application.

Each ``*.sql`` file under the migrations directory is applied once, in name
order, and recorded in ``schema_migrations`` with the SHA-256 of its bytes.
Editing a file after it was applied is reported as drift instead of being
silently skipped.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import psycopg

from contentflow.exceptions import MigrationError

logger = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "infra" / "migrations"


@dataclass(frozen=True)
class Migration:
    name: str
    sql: str
    checksum: str

    @classmethod
    def from_path(cls, path: Path) -> "Migration":
        raw = path.read_bytes()
        return cls(
            name=path.name,
            sql=raw.decode("utf-8"),
            checksum=hashlib.sha256(raw).hexdigest(),
        )


def load_migrations(directory: Path | str = DEFAULT_MIGRATIONS_DIR) -> list[Migration]:
    root = Path(directory)
    if not root.is_dir():
        raise MigrationError(f"migrations dir not found: {root}")
    migrations = [Migration.from_path(p) for p in sorted(root.glob("*.sql")) if p.is_file()]
    if not migrations:
        raise MigrationError(f"no .sql migrations found in {root}")
    return migrations


def ensure_migrations_table(conn: psycopg.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
          name TEXT PRIMARY KEY,
          checksum TEXT,
          applied_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    conn.execute("ALTER TABLE schema_migrations ADD COLUMN IF NOT EXISTS checksum TEXT")


def applied_checksums(conn: psycopg.Connection) -> dict[str, str | None]:
    rows = conn.execute("SELECT name, checksum FROM schema_migrations").fetchall()
    return {str(r[0]): (str(r[1]) if r[1] is not None else None) for r in rows}


def pending_migrations(
    migrations: list[Migration], applied: dict[str, str | None]
) -> list[Migration]:
    """Migrations not yet applied; raises on any applied file whose checksum changed."""
    drifted = [
        m.name
        for m in migrations
        if m.name in applied and applied[m.name] is not None and applied[m.name] != m.checksum
    ]
    if drifted:
        raise MigrationError(f"applied migrations were modified: {', '.join(drifted)}")
    known = {m.name for m in migrations}
    for name in sorted(set(applied) - known):
        logger.warning("applied migration %s has no file on disk", name)
    return [m for m in migrations if m.name not in applied]


def apply_migrations(
    conn: psycopg.Connection, migrations: list[Migration], *, dry_run: bool = False
) -> list[str]:
    """Apply pending migrations, each in its own transaction; return their names."""
    ensure_migrations_table(conn)
    applied = applied_checksums(conn)
    for m in migrations:
        # Rows recorded before checksums were tracked adopt the current file.
        if m.name in applied and applied[m.name] is None and not dry_run:
            conn.execute(
                "UPDATE schema_migrations SET checksum=%s WHERE name=%s", (m.checksum, m.name)
            )
    conn.commit()

    pending = pending_migrations(migrations, applied)
    if dry_run:
        for m in pending:
            logger.info("pending migration %s (sha256=%s)", m.name, m.checksum[:12])
        return [m.name for m in pending]

    for m in pending:
        conn.execute(m.sql)
        conn.execute(
            "INSERT INTO schema_migrations (name, checksum, applied_at) VALUES (%s, %s, %s)",
            (m.name, m.checksum, datetime.now(tz=timezone.utc)),
        )
        conn.commit()
        logger.info("applied migration %s (sha256=%s)", m.name, m.checksum[:12])
    if not pending:
        logger.info("schema up to date (%d migrations)", len(migrations))
    return [m.name for m in pending]
