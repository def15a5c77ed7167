"""Provider adapter interface.

An adapter turns an ``LLMRequest`` into one HTTP call and the reply into an
``LLMResponse``. It does not retry, touch the database or log payloads, and
it lets httpx errors escape for the router to classify.
"""

from abc import ABC, abstractmethod

import httpx

from refyn.services.llm.types import LLMRequest, LLMResponse

CONNECT_TIMEOUT_S = 10.0


class LLMAdapter(ABC):
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def _post_json(
        self, url: str, headers: dict[str, str], body: dict, timeout_s: float
    ) -> httpx.Response:
        """POST ``body`` and raise ``httpx.HTTPStatusError`` on a non-2xx reply."""
        response = await self._client.post(
            url,
            headers={**headers, "Content-Type": "application/json"},
            json=body,
            timeout=httpx.Timeout(timeout_s, connect=CONNECT_TIMEOUT_S),
        )
        response.raise_for_status()
        return response

    @abstractmethod
    async def generate(self, req: LLMRequest, *, api_key: str, timeout_s: float) -> LLMResponse:
        """Run ``req`` against the provider.

        Raises:
            httpx.HTTPStatusError: Non-2xx reply.
            httpx.TimeoutException: Transport timeout.
            httpx.NetworkError: Connection failure.
            LLMError: A 2xx reply with nothing usable in it.
        """
