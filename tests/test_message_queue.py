"""
Tests for the bounded FIFO message queue.
"""
import pytest

from handoff.exceptions import QueueFullError
from handoff.models.queue import QueuedMessage
from handoff.services.message_queue import MessageQueue


def make_message(text: str, session_id: str = "sess-1") -> QueuedMessage:
    return QueuedMessage(owner_id="user-1", session_id=session_id, text=text, connection_id="conn-1")


@pytest.fixture
def queue(store) -> MessageQueue:
    return MessageQueue(store, name="chat:test", max_size=3)


async def test_fifo_order(queue):
    """Test messages come out in arrival order."""
    for text in ("one", "two", "three"):
        await queue.enqueue(make_message(text))

    assert (await queue.peek()).text == "one"
    assert [(await queue.dequeue()).text for _ in range(3)] == ["one", "two", "three"]
    assert await queue.dequeue() is None
    assert await queue.is_empty() is True


async def test_enqueue_returns_position(queue):
    assert await queue.enqueue(make_message("a")) == 1
    assert await queue.enqueue(make_message("b")) == 2


async def test_full_queue_rejects(queue):
    for text in ("a", "b", "c"):
        await queue.enqueue(make_message(text))

    with pytest.raises(QueueFullError):
        await queue.enqueue(make_message("d"))
    assert await queue.size() == 3


async def test_clear_and_stats(queue):
    await queue.enqueue(make_message("a"))
    await queue.enqueue(make_message("b"))

    stats = await queue.get_stats()
    assert stats["size"] == 2
    assert stats["is_full"] is False
    assert stats["name"] == "chat:test"

    assert await queue.clear() == 2
    assert await queue.size() == 0


async def test_remove_by_id(queue):
    keep = make_message("keep")
    drop = make_message("drop")
    await queue.enqueue(keep)
    await queue.enqueue(drop)

    assert await queue.remove_by_id(drop.id) is True
    assert await queue.remove_by_id("msg_missing") is False
    assert [m.id for m in await queue.get_all()] == [keep.id]


async def test_process_batch_isolates_handler_failures(queue):
    """Test that one failing message does not stop the batch."""
    for text in ("ok-1", "boom", "ok-2"):
        await queue.enqueue(make_message(text))

    handled = []

    async def handler(message):
        if message.text == "boom":
            raise RuntimeError("handler failed")
        handled.append(message.text)

    assert await queue.process_batch(handler, batch_size=10) == 3
    assert handled == ["ok-1", "ok-2"]
    assert await queue.is_empty() is True


async def test_process_batch_respects_batch_size(queue):
    for text in ("a", "b", "c"):
        await queue.enqueue(make_message(text))

    async def handler(message):
        return None

    assert await queue.process_batch(handler, batch_size=2) == 2
    assert await queue.size() == 1
