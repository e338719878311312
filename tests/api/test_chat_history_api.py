from datetime import timedelta

from conftest import FakeScenario, message_at, utc_today
from macrocoach.api.coach import get_memory_store
from macrocoach.core.memory import MemoryStore, MessageRole
from macrocoach.db.models import ConversationSummary
from macrocoach.db.stores import SqlMessageStore


def test_conversation_and_search_after_chat(client, override_backend) -> None:
    override_backend(FakeScenario.PLAIN_TEXT)
    client.post("/coach/chat", json={"message": "How much protein for dinner?"})
    client.post("/coach/chat", json={"message": "And after my workout?"})
    today = utc_today().isoformat()

    conversation = client.get(f"/chat/conversations/{today}")
    assert conversation.status_code == 200
    body = conversation.json()
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user", "assistant"]
    assert body["topics"] == ["nutrition", "workout"]
    assert body["messages"][1]["metadata"]["persona"] == "balanced"

    search = client.get("/chat/search", params={"q": "protein dinner"}).json()
    assert search["items"][0]["date"] == today
    assert search["items"][0]["score"] >= 2


def test_missing_conversation_is_404(client) -> None:
    assert client.get("/chat/conversations/2020-01-01").status_code == 404
    assert client.get("/chat/summaries/2020-01-01").status_code == 404


def test_past_day_summary_is_persisted(client, db_session) -> None:
    past_day = utc_today() - timedelta(days=3)
    store = SqlMessageStore(db_session)
    store.append(message_at(MessageRole.USER, "Is my sleep affecting my weight?", past_day))
    store.append(message_at(MessageRole.ASSISTANT, "You should aim for 8 hours.", past_day, minute=1))

    response = client.get(f"/chat/summaries/{past_day.isoformat()}")
    assert response.status_code == 200
    body = response.json()
    assert body["topics"] == ["weight", "sleep"]
    assert body["summary"] == "Discussed 2 topics including weight, sleep. 1 questions asked."
    assert body["key_decisions"] == ["You should aim for 8 hours."]

    db_session.expire_all()
    assert db_session.query(ConversationSummary).filter(ConversationSummary.session_date == past_day).count() == 1


def test_today_summary_is_not_persisted(client, override_backend, db_session) -> None:
    override_backend(FakeScenario.PLAIN_TEXT)
    client.post("/coach/chat", json={"message": "hello"})

    response = client.get(f"/chat/summaries/{utc_today().isoformat()}")
    assert response.status_code == 200
    assert response.json()["summary"] == "General conversation. 1 questions asked."
    assert db_session.query(ConversationSummary).count() == 0


def test_plans_list_and_invalidate(client, db_session) -> None:
    memory = MemoryStore(SqlMessageStore(db_session))
    plan = memory.save_plan("workout", "Push Pull Legs", {"items": [{"name": "Push day"}]})

    listing = client.get("/chat/plans").json()["items"]
    assert [(p["id"], p["type"], p["name"], p["status"]) for p in listing] == [
        (plan.id, "workout", "Push Pull Legs", "active")
    ]

    assert client.delete(f"/chat/plans/{plan.id}").status_code == 204
    assert client.get("/chat/plans").json()["items"] == []
    assert client.delete("/chat/plans/999").status_code == 404


def test_plans_filter_by_type(client, db_session) -> None:
    memory = MemoryStore(SqlMessageStore(db_session))
    memory.save_plan("workout", "Push Pull Legs", {})
    memory.save_plan("meal", "Lean week", {})

    listing = client.get("/chat/plans", params={"type": "Meal"}).json()["items"]
    assert [p["name"] for p in listing] == ["Lean week"]
    assert len(client.get("/chat/plans").json()["items"]) == 2


def test_long_day_transcript_is_complete(client, app, db_session) -> None:
    app.dependency_overrides[get_memory_store] = lambda: MemoryStore(
        SqlMessageStore(db_session), max_messages_per_day=2
    )
    day = utc_today() - timedelta(days=1)
    store = SqlMessageStore(db_session)
    for minute, text in enumerate(["first", "second", "third"]):
        store.append(message_at(MessageRole.USER, text, day, minute=minute))

    body = client.get(f"/chat/conversations/{day.isoformat()}").json()
    assert [m["content"] for m in body["messages"]] == ["first", "second", "third"]


def test_retired_plans_do_not_hide_older_active_ones(db_session) -> None:
    memory = MemoryStore(SqlMessageStore(db_session), max_plans=2)
    kept = memory.save_plan("meal", "Lean week", {})
    for name in ("Bulk", "Maintain", "Reverse diet"):
        memory.invalidate_plan(memory.save_plan("meal", name, {}).id)

    assert [plan.id for plan in memory.get_active_plans()] == [kept.id]
