import sqlite3
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from conftest import message_at
from macrocoach.core.memory import ConversationSummary, MessageRole, Plan
from macrocoach.db.models import Base
from macrocoach.db.stores import SqlMessageStore
from scripts.clear_memory import main

OLD_DAY = date(2026, 3, 1)
NEW_DAY = date(2026, 3, 14)


@pytest.fixture
def memory_db(tmp_path):
    db_path = tmp_path / "memory.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)
    with Session(engine) as db:
        store = SqlMessageStore(db)
        for day in (OLD_DAY, NEW_DAY):
            store.append(message_at(MessageRole.USER, "question", day))
            store.append(message_at(MessageRole.ASSISTANT, "answer", day, minute=1))
            store.save_summary(ConversationSummary(date=day, topics=(), summary="General conversation."))
            store.add_plan(Plan(plan_type="meal", name="Lean", details={}, created_date=day))
    engine.dispose()
    return db_path


def _count(db_path, table: str) -> int:
    conn = sqlite3.connect(str(db_path))
    try:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    finally:
        conn.close()


def test_dry_run_reports_without_deleting(memory_db, capsys) -> None:
    assert main(["--db-path", str(memory_db), "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "chat_messages: 4" in out
    assert _count(memory_db, "chat_messages") == 4


def test_before_only_removes_older_rows(memory_db) -> None:
    assert main(["--db-path", str(memory_db), "--before", "2026-03-10", "--yes"]) == 0

    assert _count(memory_db, "chat_messages") == 2
    assert _count(memory_db, "conversation_summaries") == 1
    assert _count(memory_db, "coach_plans") == 1


def test_only_limits_targets(memory_db) -> None:
    assert main(["--db-path", str(memory_db), "--only", "plans", "--yes"]) == 0

    assert _count(memory_db, "coach_plans") == 0
    assert _count(memory_db, "chat_messages") == 4


def test_requires_confirmation(memory_db) -> None:
    with pytest.raises(SystemExit):
        main(["--db-path", str(memory_db)])


def test_missing_db_returns_error(tmp_path) -> None:
    assert main(["--db-path", str(tmp_path / "missing.db"), "--yes"]) == 1
