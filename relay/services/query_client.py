"""
Client for the downstream query-answering API.

Calls go through a CircuitBreaker wrapping fetch_with_retry: retries absorb
transient blips, the breaker stops hammering an API that stays down.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from relay.services.circuit_breaker import CircuitBreaker, StaticFallback
from relay.services.errors import ServiceError, ServiceUnavailableError
from relay.services.retry import RetryPolicy, fetch_with_retry

if TYPE_CHECKING:
    from relay.bot.models import NormalizedQuery

# Where an answer may live in the response body, highest priority first
ANSWER_FIELDS: tuple[tuple[str, ...], ...] = (
    ("answer",),
    ("response",),
    ("data", "answer"),
    ("final_answer",),
    ("output",),
)

NO_ANSWER = "Sorry, I couldn't find an answer."
BUSY_ANSWER = "Sorry, the system is currently busy. Please try again in a few moments."


@dataclass
class QueryAnswer:
    answer: str
    degraded: bool = False  # served by the breaker fallback


def extract_answer(
    data: Any, rules: tuple[tuple[str, ...], ...] = ANSWER_FIELDS
) -> str | None:
    """Return the first non-empty string found along rules, in order."""
    if isinstance(data, str):
        return data if data.strip() else None
    if not isinstance(data, dict):
        return None

    for path in rules:
        value: Any = data
        for key in path:
            value = value.get(key) if isinstance(value, dict) else None
        if isinstance(value, str) and value.strip():
            return value
    return None


class QueryClient:
    """
    Forwards normalized queries and returns the answer text.

    Usage:
        client = QueryClient(
            endpoint="https://api.example.com/api/ui/query",
            breaker=CircuitBreaker("query_api"),
        )
        answer = await client.query(normalized)
    """

    SERVICE_ID = "query_api"

    def __init__(
        self,
        endpoint: str,
        breaker: CircuitBreaker,
        token: str = "",
        policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.breaker = breaker
        self.token = token
        self.policy = policy or RetryPolicy()
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.policy.timeout))

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def query(self, query: "NormalizedQuery") -> QueryAnswer:
        """Ask the query API, or get the busy answer while the circuit is open.

        Raises:
            ServiceUnavailableError: No endpoint configured
            ServiceError: Non-2xx response after retries
            RequestTimeoutError / httpx.HTTPError: Transport failure after retries
        """
        if not self.endpoint:
            raise ServiceUnavailableError(
                "QUERY_API_URL is not configured", service_id=self.SERVICE_ID
            )

        return await self.breaker.execute(
            lambda: self._query_once(query),
            StaticFallback(QueryAnswer(answer=BUSY_ANSWER, degraded=True)),
        )

    async def _query_once(self, query: "NormalizedQuery") -> QueryAnswer:
        body = query.model_dump(mode="json")
        body["conversation_id"] = query.conversation_id

        response = await fetch_with_retry(
            self._client,
            "POST",
            self.endpoint,
            self.policy,
            service_id=self.SERVICE_ID,
            json=body,
            headers=self._get_headers(),
        )

        if not response.is_success:
            raise ServiceError(
                f"Query API error: {response.status_code} {response.reason_phrase}",
                service_id=self.SERVICE_ID,
            )

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        answer = extract_answer(data)
        if answer is None:
            logger.warning(
                f"No answer field in query API response (keys: "
                f"{sorted(data) if isinstance(data, dict) else type(data).__name__})"
            )
            return QueryAnswer(answer=NO_ANSWER)
        return QueryAnswer(answer=answer)

    def get_circuit_status(self) -> dict[str, Any]:
        return self.breaker.get_status()

    async def close(self) -> None:
        await self._client.aclose()
