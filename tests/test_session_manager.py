"""
Tests for the session and context manager.
"""
import pytest

from handoff.exceptions import SessionNotFoundError
from handoff.models.session import Message, MessageRole
from handoff.services.session_manager import SessionManager
from handoff.utils.encryption import PayloadCipher


# ===========================
# Fixtures
# ===========================

@pytest.fixture
def sessions(ticking_store, clock) -> SessionManager:
    return SessionManager(ticking_store, ttl=1800, max_messages=10, max_tokens=2000, clock=clock)


# ===========================
# Lifecycle Tests
# ===========================

async def test_get_or_create_session(sessions):
    created = await sessions.get_or_create_session("user-1", "sess-1", "ES")
    resumed = await sessions.get_or_create_session("user-1", "sess-1", "en")

    assert created.language == "es"
    assert resumed.language == "es"
    assert resumed.created_at == created.created_at


async def test_sessions_are_scoped_by_owner(sessions):
    await sessions.create_session("user-1", "sess-1")

    assert await sessions.get_session("user-2", "sess-1") is None
    assert await sessions.session_exists("user-1", "sess-1") is True


async def test_update_missing_session_raises(sessions):
    with pytest.raises(SessionNotFoundError):
        await sessions.update_session("user-1", "missing", language="fr")


async def test_update_language(sessions):
    await sessions.create_session("user-1", "sess-1")

    updated = await sessions.update_language("user-1", "sess-1", "FR")

    assert updated.language == "fr"


async def test_session_expires_after_ttl(sessions, ticker):
    await sessions.create_session("user-1", "sess-1")

    ticker.advance(1801)

    assert await sessions.get_session("user-1", "sess-1") is None


async def test_activity_refreshes_ttl(sessions, ticker):
    await sessions.create_session("user-1", "sess-1")
    ticker.advance(1000)

    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "still here")
    ticker.advance(1000)

    assert await sessions.get_session("user-1", "sess-1") is not None
    assert await sessions.extend_session("user-1", "sess-1") is True
    assert await sessions.get_session_ttl("user-1", "sess-1") == 1800


async def test_delete_session(sessions):
    await sessions.create_session("user-1", "sess-1")

    assert await sessions.delete_session("user-1", "sess-1") is True
    assert await sessions.get_session("user-1", "sess-1") is None


# ===========================
# History Tests
# ===========================

async def test_history_never_exceeds_ten_messages(sessions):
    """Test that 11 messages leave only the last 10."""
    for i in range(11):
        session = await sessions.add_message("user-1", "sess-1", MessageRole.USER, f"message {i}")
        assert session.message_count <= 10

    context = await sessions.get_context("user-1", "sess-1")
    assert len(context) == 10
    assert context[0].content == "message 1"
    assert context[-1].content == "message 10"


async def test_add_message_recreates_missing_session(sessions):
    session = await sessions.add_message("user-1", "sess-new", MessageRole.USER, "hello", "de")

    assert session.language == "de"
    assert session.message_count == 1


async def test_token_budget_keeps_newest_in_order(sessions):
    """Test the budget walk from newest to oldest."""
    # 400 chars ~ 100 tokens each
    for i in range(5):
        await sessions.add_message("user-1", "sess-1", MessageRole.USER, f"{i}" * 400)

    context = await sessions.get_context_with_token_limit("user-1", "sess-1", max_tokens=250)

    assert [m.content[0] for m in context] == ["3", "4"]


async def test_token_budget_stops_at_first_overflow(sessions):
    """A large message ends the walk even if older ones would fit."""
    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "old")
    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "x" * 4000)
    await sessions.add_message("user-1", "sess-1", MessageRole.ASSISTANT, "newest")

    context = await sessions.get_context_with_token_limit("user-1", "sess-1", max_tokens=100)

    assert [m.content for m in context] == ["newest"]


def test_select_within_budget_never_exceeds_budget(sessions):
    messages = [Message(role=MessageRole.USER, content="y" * n) for n in (10, 200, 35, 80, 4)]

    for budget in (0, 1, 10, 30, 60, 100):
        selected = sessions.select_within_budget(messages, budget)
        assert sum(sessions.estimate_tokens(m.content) for m in selected) <= budget
        assert selected == messages[len(messages) - len(selected):]


async def test_clear_context(sessions):
    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "hello")

    assert sessions.should_clear_context("Let's start over") is True
    assert sessions.should_clear_context("OK, new topic: how do I change my billing address?") is True
    assert sessions.should_clear_context("how do I change my billing address?") is False

    assert await sessions.clear_context("user-1", "sess-1") is True
    assert await sessions.get_context("user-1", "sess-1") == []
    assert await sessions.get_session("user-1", "sess-1") is not None


async def test_context_summary(sessions):
    assert await sessions.get_context_summary("user-1", "sess-1") == "No previous conversation."

    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "Where is my order?")
    await sessions.add_message("user-1", "sess-1", MessageRole.ASSISTANT, "Let me check.")

    summary = await sessions.get_context_summary("user-1", "sess-1")
    assert summary == "User: Where is my order?\nAssistant: Let me check."


async def test_conversation_metadata(sessions):
    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "hi")

    metadata = await sessions.get_conversation_metadata("user-1", "sess-1")

    assert metadata["message_count"] == 1
    assert metadata["ttl_seconds"] == 1800
    assert await sessions.get_conversation_metadata("user-1", "missing") is None


# ===========================
# Encryption Tests
# ===========================

async def test_encrypted_sessions_are_opaque_in_store(store, clock):
    cipher = PayloadCipher(PayloadCipher.generate_key())
    sessions = SessionManager(store, cipher=cipher, clock=clock)

    await sessions.add_message("user-1", "sess-1", MessageRole.USER, "my card number is secret")

    raw = await store.get("session:user-1:sess-1")
    assert set(raw) == {"encrypted"}
    assert "secret" not in raw["encrypted"]

    context = await sessions.get_context("user-1", "sess-1")
    assert context[0].content == "my card number is secret"
