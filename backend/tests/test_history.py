"""Test chat history persistence and idempotent session saves."""

import asyncio
from datetime import datetime

from legalease.repositories.chat_history import ChatHistoryRepository
from legalease.services.history import (
    build_transcript_document,
    create_chat,
    save_transcript_to_history,
    session_idempotency_key,
)


TRANSCRIPT = "The landlord agreed to return the deposit within thirty days of move out."

MESSAGES = [{"id": "1", "content": "What is a lien?", "role": "user"}]


def test_create_and_list_newest_first(session):
    first, _ = create_chat(session, user_id="u1", title="First", type="advice", messages=MESSAGES)
    second, _ = create_chat(session, user_id="u1", title="Second", type="advice", messages=MESSAGES)
    chats = ChatHistoryRepository(session).list_by_user("u1")
    assert {c.id for c in chats} == {first.id, second.id}
    assert chats[0].created_at >= chats[1].created_at


def test_history_is_capped_per_user(session):
    for i in range(5):
        create_chat(session, user_id="u1", title=f"Chat {i}", type="advice", messages=MESSAGES, keep=3)
    create_chat(session, user_id="u2", title="Other", type="advice", messages=MESSAGES, keep=3)
    repo = ChatHistoryRepository(session)
    assert repo.count_by_user("u1") == 3
    assert repo.count_by_user("u2") == 1


def test_duplicate_key_returns_existing(session):
    chat, created = create_chat(session, user_id="u1", title="T", type="transcript", messages=MESSAGES, idempotency_key="k1")
    again, created_again = create_chat(session, user_id="u1", title="T", type="transcript", messages=MESSAGES, idempotency_key="k1")
    assert created is True
    assert created_again is False
    assert again.id == chat.id


def test_session_key_depends_on_meeting_and_text():
    assert session_idempotency_key("m1", "a") == session_idempotency_key("m1", "a")
    assert session_idempotency_key("m1", "a") != session_idempotency_key("m1", "b")
    assert session_idempotency_key("m1", "a") != session_idempotency_key("m2", "a")
    assert session_idempotency_key(None, "a").startswith("unknown:")


def test_transcript_document_estimates_duration():
    doc = build_transcript_document("abc-defg-hij", " ".join(["word"] * 300), now=datetime(2026, 3, 1, 10, 0, 0))
    assert doc["title"] == "Meeting Transcript - abc-defg-hij - 2026-03-01"
    assert doc["duration"] == "2 minutes"
    assert doc["word_count"] == 300
    assert "Meeting ID: abc-defg-hij" in doc["content"]


def test_transcript_saved_once(session, llm):
    llm.reply = '{"title": "Deposit", "overview": "Deposit terms."}'
    chat, analysis, created = asyncio.run(
        save_transcript_to_history(session, llm, user_id="u1", meeting_id="m1", transcript=TRANSCRIPT)
    )
    again, analysis_again, created_again = asyncio.run(
        save_transcript_to_history(session, llm, user_id="u1", meeting_id="m1", transcript=TRANSCRIPT)
    )
    assert created is True
    assert created_again is False
    assert again.id == chat.id
    assert analysis_again.title == "Deposit"
    assert len(llm.prompts) == 1
    assert chat.type == "transcript"
    assert ChatHistoryRepository(session).count_by_user("u1") == 1


def test_history_routes(client):
    assert client.get("/chat-history").status_code == 400
    assert client.post("/chat-history", json={"userId": "u1"}).status_code == 400

    created = client.post(
        "/chat-history",
        json={"userId": "u1", "title": "Lien question", "type": "advice", "messages": MESSAGES},
    ).json()
    assert created["success"] is True
    chat_id = created["chatId"]
    assert created["chat"]["messageCount"] == 1

    listing = client.get("/chat-history", params={"userId": "u1"}).json()
    assert listing["total"] == 1
    assert listing["chats"][0]["id"] == chat_id

    updated = client.put(
        "/chat-history",
        json={"chatId": chat_id, "userId": "u1", "messages": MESSAGES * 2, "lastMessage": "Thanks"},
    ).json()
    assert updated["chat"]["messageCount"] == 2
    assert updated["chat"]["lastMessage"] == "Thanks"

    assert client.put("/chat-history", json={"chatId": "missing", "userId": "u1"}).status_code == 404
    assert client.get(f"/chat-history/{chat_id}").json()["chat"]["title"] == "Lien question"

    deleted = client.delete(f"/chat-history/{chat_id}").json()
    assert deleted["success"] is True
    assert client.get(f"/chat-history/{chat_id}").status_code == 404


def test_analyze_saves_transcript_once(client, llm):
    llm.reply = '{"title": "Meeting", "overview": "Summary."}'
    body = {
        "documentText": TRANSCRIPT,
        "meetingId": "m1",
        "type": "transcript",
        "saveToHistory": True,
        "userId": "u1",
        "idempotencyKey": "m1:abc",
    }
    first = client.post("/analyze", json=body).json()
    second = client.post("/analyze", json=body).json()
    assert first["created"] is True
    assert second["created"] is False
    assert first["chatId"] == second["chatId"]
    assert first["analysis"]["title"] == "Meeting"
    assert client.get("/chat-history", params={"userId": "u1"}).json()["total"] == 1


def test_analyze_without_save(client, llm):
    llm.reply = '{"title": "NDA", "overview": "Confidentiality."}'
    response = client.post("/analyze", json={"documentText": "Confidential information means..."})
    assert response.status_code == 200
    assert response.json() == {
        "analysis": {"title": "NDA", "overview": "Confidentiality.", "keyPoints": [], "risks": [], "clauses": []}
    }
