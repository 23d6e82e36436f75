import argparse
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import text

from provisioner.db import engine, session_scope
from provisioner.repositories import register_vm, write_event


def apply_migrations() -> list[str]:
    migrations_dir = Path(__file__).resolve().parent.parent / "migrations"
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE IF NOT EXISTS schema_migrations (version TEXT PRIMARY KEY, applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP)"
            )
        )
        rows = conn.execute(text("SELECT version FROM schema_migrations")).fetchall()
        applied = {row[0] for row in rows}

    newly_applied: list[str] = []
    raw = engine.raw_connection()
    try:
        for migration in sorted(migrations_dir.glob("*.sql")):
            version = migration.stem
            if version in applied:
                continue
            try:
                raw.executescript(migration.read_text(encoding="utf-8"))
            except sqlite3.OperationalError as exc:
                if "already exists" not in str(exc):
                    raise
            raw.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                (version, datetime.now(UTC).replace(tzinfo=None).isoformat()),
            )
            newly_applied.append(version)
        raw.commit()
    finally:
        raw.close()
    return newly_applied


def seed_vm(vm_id: str, owner_id: str, item_path: str) -> None:
    with session_scope() as session:
        register_vm(session, vm_id, owner_id, item_path)
        session.flush()
        write_event(
            session, "vm.registered", {"owner_id": owner_id, "item_path": item_path}, vm_id
        )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Apply schema migrations")
    parser.add_argument(
        "--register",
        nargs=3,
        metavar=("VM_ID", "OWNER_ID", "ITEM_PATH"),
        help="also record ownership of an initialized VM",
    )
    args = parser.parse_args(argv)
    applied = apply_migrations()
    print(f"migrations applied: {', '.join(applied) or 'none'}")
    if args.register:
        seed_vm(*args.register)
        print(f"registered vm {args.register[0]}")


if __name__ == "__main__":
    main()
