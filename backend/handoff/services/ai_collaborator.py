"""
AI collaborator contract and implementations.
The language model is an opaque function: message, history and language in;
reply text, confidence and a handoff hint out.

Version: 1.0.0
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout

from ..exceptions import AIServiceError
from ..models.session import Message
from ..utils.retry import CircuitBreaker, CircuitBreakerOpenError
from ..utils.telemetry import track_ai_response_time

logger = logging.getLogger(__name__)


@dataclass
class AIResponse:
    """Reply produced by the AI collaborator."""
    content: str
    confidence: float
    should_handoff: bool = False

    def __post_init__(self):
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)


class AICollaborator(ABC):
    """Generates assistant replies. Implementations may be slow or fail."""

    @abstractmethod
    async def generate_response(
        self,
        user_message: str,
        conversation_history: List[Message],
        language: str = "en"
    ) -> AIResponse:
        """
        Produce a reply.

        Raises:
            AIServiceError: If no reply could be produced
        """
        pass

    async def close(self) -> None:
        pass


class HTTPAICollaborator(AICollaborator):
    """
    Posts the conversation to an HTTP endpoint.

    Request: {"message", "history": [{"role", "content"}], "language"}
    Response: {"content", "confidence", "should_handoff"}

    Failures are not retried; an open circuit fails fast.
    """

    def __init__(
        self,
        endpoint_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0
    ):
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.timeout = timeout
        self.circuit_breaker = CircuitBreaker(
            name="ai_collaborator",
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout
        )
        self.session: Optional[ClientSession] = None

        logger.info(f"HTTPAICollaborator initialized (endpoint={endpoint_url}, timeout={timeout}s)")

    def _get_session(self) -> ClientSession:
        if self.session is None or self.session.closed:
            headers = {
                "User-Agent": "HandoffCore/1.0",
                "Accept": "application/json",
            }
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            self.session = ClientSession(
                timeout=ClientTimeout(total=self.timeout),
                connector=aiohttp.TCPConnector(limit=20, limit_per_host=10, ttl_dns_cache=300),
                headers=headers
            )
        return self.session

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        async with self._get_session().post(self.endpoint_url, json=body) as response:
            if response.status != 200:
                text = await response.text()
                raise AIServiceError(f"AI endpoint returned HTTP {response.status}: {text[:200]}")
            return await response.json()

    async def generate_response(
        self,
        user_message: str,
        conversation_history: List[Message],
        language: str = "en"
    ) -> AIResponse:
        body = {
            "message": user_message,
            "history": [
                {"role": message.role.value, "content": message.content}
                for message in conversation_history
            ],
            "language": language,
        }

        start = time.perf_counter()
        try:
            data = await self.circuit_breaker.call_async(self._post, body)
            result = AIResponse(
                content=str(data["content"]),
                confidence=float(data.get("confidence", 0.0)),
                should_handoff=bool(data.get("should_handoff", False))
            )
        except CircuitBreakerOpenError as e:
            track_ai_response_time(time.perf_counter() - start, success=False)
            raise AIServiceError(f"AI collaborator circuit open: {e}") from e
        except AIServiceError:
            track_ai_response_time(time.perf_counter() - start, success=False)
            raise
        except (ClientError, asyncio.TimeoutError, KeyError, ValueError, TypeError) as e:
            track_ai_response_time(time.perf_counter() - start, success=False)
            logger.error(f"AI collaborator call failed: {e}")
            raise AIServiceError(f"AI collaborator call failed: {e}") from e

        track_ai_response_time(time.perf_counter() - start, success=True)
        return result

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None
        logger.info("✓ HTTPAICollaborator closed")


class MockAICollaborator(AICollaborator):
    """Deterministic replies for development and tests."""

    def __init__(self, confidence: float = 0.8, reply_prefix: str = "Thanks for reaching out."):
        self.confidence = confidence
        self.reply_prefix = reply_prefix
        self.calls = 0

    async def generate_response(
        self,
        user_message: str,
        conversation_history: List[Message],
        language: str = "en"
    ) -> AIResponse:
        self.calls += 1
        return AIResponse(
            content=f"{self.reply_prefix} You said: {user_message[:200]}",
            confidence=self.confidence,
            should_handoff=False
        )


__all__ = ['AIResponse', 'AICollaborator', 'HTTPAICollaborator', 'MockAICollaborator']
