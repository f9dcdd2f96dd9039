"""
Session and context manager.
Keeps each conversation's recent history under a TTL in the coordination
store and selects the context window handed to the AI collaborator.

Version: 1.0.0
"""
import json
import logging
import math
from typing import Any, Dict, List, Optional

from ..exceptions import SessionNotFoundError
from ..models.session import Message, MessageRole, SessionData
from ..store import CoordinationStore, Document
from ..utils.clock import Clock, utcnow
from ..utils.encryption import PayloadCipher
from .intent import IntentClassifier, KeywordIntentClassifier

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.ASSISTANT: "Assistant",
    MessageRole.SYSTEM: "System",
}


class SessionManager:
    """
    TTL-bound conversation state.

    Every write is a single atomic update in the store and refreshes the
    TTL, so a session lives for ``ttl`` seconds after its last activity.
    The message list is trimmed to the newest ``max_messages`` on every
    append regardless of message size.
    """

    def __init__(
        self,
        store: CoordinationStore,
        classifier: Optional[IntentClassifier] = None,
        ttl: int = 1800,
        max_messages: int = 10,
        max_tokens: int = 2000,
        tokens_per_char: float = 0.25,
        summary_messages: int = 5,
        cipher: Optional[PayloadCipher] = None,
        clock: Clock = utcnow
    ):
        """
        Initialize session manager.

        Args:
            store: Coordination store
            classifier: Intent classifier used for clear-context detection
            ttl: Session lifetime in seconds since last activity
            max_messages: Messages kept per session
            max_tokens: Default context window budget
            tokens_per_char: Token estimate per character
            summary_messages: Messages rendered by get_context_summary
            cipher: Encrypts session payloads at rest when given
            clock: Source of the current time
        """
        self.store = store
        self.classifier = classifier or KeywordIntentClassifier()
        self.ttl = ttl
        self.max_messages = max_messages
        self.max_tokens = max_tokens
        self.tokens_per_char = tokens_per_char
        self.summary_messages = summary_messages
        self.cipher = cipher
        self.clock = clock

        logger.info(
            f"SessionManager initialized (ttl={ttl}s, max_messages={max_messages}, "
            f"max_tokens={max_tokens}, encryption={cipher is not None})"
        )

    # ===========================
    # Serialization
    # ===========================

    @staticmethod
    def _key(owner_id: str, session_id: str) -> str:
        return f"session:{owner_id}:{session_id}"

    def _encode(self, session: SessionData) -> Document:
        data = session.to_dict()
        if self.cipher is None:
            return data
        return {"encrypted": self.cipher.encrypt_string(json.dumps(data))}

    def _decode(self, document: Document) -> SessionData:
        if "encrypted" in document:
            if self.cipher is None:
                raise ValueError("Session is encrypted but no encryption key is configured")
            document = json.loads(self.cipher.decrypt_string(document["encrypted"]))
        return SessionData.from_dict(document)

    async def _apply(
        self,
        owner_id: str,
        session_id: str,
        change,
        create_language: Optional[str] = None
    ) -> Optional[SessionData]:
        """
        Atomically apply ``change`` to a session and refresh its TTL.

        When the session is missing it is created first if
        ``create_language`` is given, otherwise nothing is written.
        """
        now = self.clock()

        def mutator(current: Optional[Document]) -> Optional[Document]:
            if current is None:
                if create_language is None:
                    return None
                session = SessionData(
                    owner_id=owner_id,
                    session_id=session_id,
                    language=create_language,
                    created_at=now,
                    last_activity=now
                )
            else:
                session = self._decode(current)

            session = change(session)
            session.touch(now)
            return self._encode(session)

        written = await self.store.update(self._key(owner_id, session_id), mutator, ttl=self.ttl)
        return self._decode(written) if written is not None else None

    # ===========================
    # Lifecycle
    # ===========================

    async def create_session(
        self,
        owner_id: str,
        session_id: str,
        language: str = "en",
        metadata: Optional[Dict[str, Any]] = None
    ) -> SessionData:
        """Create (or replace) a session with an empty history."""
        now = self.clock()
        session = SessionData(
            owner_id=owner_id,
            session_id=session_id,
            language=language,
            metadata=metadata or {},
            created_at=now,
            last_activity=now
        )
        await self.store.put(self._key(owner_id, session_id), self._encode(session), ttl=self.ttl)
        logger.info(f"Created session {session_id} for {owner_id} (language={session.language})")
        return session

    async def get_session(self, owner_id: str, session_id: str) -> Optional[SessionData]:
        document = await self.store.get(self._key(owner_id, session_id))
        return self._decode(document) if document is not None else None

    async def get_or_create_session(
        self,
        owner_id: str,
        session_id: str,
        language: str = "en"
    ) -> SessionData:
        """Resume a live session (refreshing its TTL) or start a new one."""
        return await self._apply(owner_id, session_id, lambda s: s, create_language=language)

    async def update_session(self, owner_id: str, session_id: str, **changes: Any) -> SessionData:
        """
        Update session fields and refresh the TTL.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        def change(session: SessionData) -> SessionData:
            return SessionData.model_validate({**session.model_dump(), **changes})

        updated = await self._apply(owner_id, session_id, change)
        if updated is None:
            raise SessionNotFoundError(f"Session {session_id} not found for {owner_id}")
        return updated

    async def extend_session(self, owner_id: str, session_id: str) -> bool:
        """Refresh the TTL. Returns False if the session is gone."""
        return await self.store.expire(self._key(owner_id, session_id), self.ttl)

    async def delete_session(self, owner_id: str, session_id: str) -> bool:
        deleted = await self.store.delete(self._key(owner_id, session_id))
        if deleted:
            logger.info(f"Deleted session {session_id} for {owner_id}")
        return deleted

    async def session_exists(self, owner_id: str, session_id: str) -> bool:
        return await self.store.exists(self._key(owner_id, session_id))

    async def get_session_ttl(self, owner_id: str, session_id: str) -> int:
        return await self.store.ttl(self._key(owner_id, session_id))

    # ===========================
    # History
    # ===========================

    async def add_message(
        self,
        owner_id: str,
        session_id: str,
        role: MessageRole,
        content: str,
        language: str = "en"
    ) -> SessionData:
        """
        Append a message and trim the history to the newest messages.

        A session that expired in the meantime is recreated.
        """
        message = Message(role=role, content=content, timestamp=self.clock())
        max_messages = self.max_messages

        def change(session: SessionData) -> SessionData:
            session.messages = (session.messages + [message])[-max_messages:]
            return session

        return await self._apply(owner_id, session_id, change, create_language=language)

    async def get_context(self, owner_id: str, session_id: str) -> List[Message]:
        session = await self.get_session(owner_id, session_id)
        return list(session.messages) if session else []

    def estimate_tokens(self, text: str) -> int:
        return math.ceil(len(text) * self.tokens_per_char)

    def select_within_budget(self, messages: List[Message], max_tokens: int) -> List[Message]:
        """
        Newest messages whose estimated cost fits ``max_tokens``.

        Walks newest to oldest and stops at the first message that would
        overflow the budget; the result is in chronological order.
        """
        kept: List[Message] = []
        used = 0
        for message in reversed(messages):
            cost = self.estimate_tokens(message.content)
            if used + cost > max_tokens:
                break
            kept.append(message)
            used += cost
        kept.reverse()
        return kept

    async def get_context_with_token_limit(
        self,
        owner_id: str,
        session_id: str,
        max_tokens: Optional[int] = None
    ) -> List[Message]:
        messages = await self.get_context(owner_id, session_id)
        budget = self.max_tokens if max_tokens is None else max_tokens
        selected = self.select_within_budget(messages, budget)

        if len(selected) < len(messages):
            logger.debug(
                f"Context for {session_id} trimmed to {len(selected)}/{len(messages)} "
                f"messages by the {budget}-token budget"
            )
        return selected

    def should_clear_context(self, text: str) -> bool:
        return self.classifier.should_clear_context(text)

    async def clear_context(self, owner_id: str, session_id: str) -> bool:
        """Wipe the history, keeping the session itself."""
        def change(session: SessionData) -> SessionData:
            session.messages = []
            return session

        cleared = await self._apply(owner_id, session_id, change)
        if cleared is not None:
            logger.info(f"Cleared context of session {session_id}")
        return cleared is not None

    async def get_context_summary(self, owner_id: str, session_id: str) -> str:
        """Last few messages as ``Role: content`` lines."""
        messages = await self.get_context(owner_id, session_id)
        if not messages:
            return "No previous conversation."

        return "\n".join(
            f"{ROLE_LABELS[message.role]}: {message.content}"
            for message in messages[-self.summary_messages:]
        )

    async def update_language(self, owner_id: str, session_id: str, language: str) -> SessionData:
        return await self.update_session(owner_id, session_id, language=language)

    async def get_conversation_metadata(self, owner_id: str, session_id: str) -> Optional[Dict[str, Any]]:
        session = await self.get_session(owner_id, session_id)
        if session is None:
            return None

        return {
            "owner_id": session.owner_id,
            "session_id": session.session_id,
            "language": session.language,
            "message_count": session.message_count,
            "created_at": session.created_at.isoformat(),
            "last_activity": session.last_activity.isoformat(),
            "ttl_seconds": await self.get_session_ttl(owner_id, session_id),
        }


__all__ = ['SessionManager']
