from __future__ import annotations

import argparse
import os
import sys

import psycopg

from contentflow.config import Settings
from contentflow.exceptions import MigrationError
from contentflow.migrations import DEFAULT_MIGRATIONS_DIR, apply_migrations, load_migrations
from contentflow.utils import setup_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply contentflow SQL migrations.")
    parser.add_argument(
        "--migrations-dir",
        default=str(DEFAULT_MIGRATIONS_DIR),
        help="Directory containing *.sql migrations (default: infra/migrations)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Conninfo; falls back to DATABASE_URL, then Settings.database_url",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Verify checksums and list pending migrations without applying them",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    settings = Settings()
    setup_logging(settings)
    database_url = args.database_url or os.environ.get("DATABASE_URL") or settings.database_url
    try:
        migrations = load_migrations(args.migrations_dir)
        with psycopg.connect(database_url, autocommit=False) as conn:
            apply_migrations(conn, migrations, dry_run=args.dry_run)
    except MigrationError as exc:
        print(f"migration failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
