import argparse
import os
import sqlite3
from datetime import date
from pathlib import Path
from typing import Optional

# Table -> column holding the calendar day used by --before.
MEMORY_TABLES = {
    "messages": ("chat_messages", "session_date"),
    "summaries": ("conversation_summaries", "session_date"),
    "plans": ("coach_plans", "created_date"),
}


def resolve_db_path(override: Optional[str]) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    env_path = os.getenv("DB_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path("/var/data/macrocoach.db").resolve()


def _where(before: Optional[date], column: str) -> tuple[str, list[str]]:
    if before is None:
        return "", []
    return f" WHERE {column} < ?", [before.isoformat()]


def count_rows(conn: sqlite3.Connection, targets: list[str], before: Optional[date]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for target in targets:
        table, column = MEMORY_TABLES[target]
        clause, params = _where(before, column)
        counts[table] = int(conn.execute(f"SELECT COUNT(*) FROM {table}{clause}", params).fetchone()[0])
    return counts


def delete_rows(conn: sqlite3.Connection, targets: list[str], before: Optional[date]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for target in targets:
        table, column = MEMORY_TABLES[target]
        clause, params = _where(before, column)
        cur = conn.execute(f"DELETE FROM {table}{clause}", params)
        counts[table] = cur.rowcount if cur.rowcount is not None else 0
    return counts


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Clear coach memory (chat, summaries, plans) from the MacroCoach SQLite DB.")
    parser.add_argument(
        "--only",
        action="append",
        choices=sorted(MEMORY_TABLES),
        default=[],
        help="Restrict to one memory kind (repeatable). Defaults to all kinds.",
    )
    parser.add_argument(
        "--before",
        type=date.fromisoformat,
        default=None,
        help="Only delete rows dated strictly before YYYY-MM-DD.",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override SQLite DB path. Defaults to DB_PATH env or app default.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show matching row counts only; do not delete.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm destructive operation.",
    )
    args = parser.parse_args(argv)

    if not args.dry_run and not args.yes:
        parser.error("Add --yes to confirm deletion")

    db_path = resolve_db_path(args.db_path)
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1

    targets = sorted(set(args.only)) or sorted(MEMORY_TABLES)
    conn = sqlite3.connect(str(db_path))
    try:
        print(f"Target DB: {db_path}")
        if args.dry_run:
            print("Matching rows:")
            for table, count in count_rows(conn, targets, args.before).items():
                print(f"  {table}: {count}")
            return 0
        counts = delete_rows(conn, targets, args.before)
        conn.commit()
        print("Deleted rows:")
        for table, count in counts.items():
            print(f"  {table}: {count}")
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
