"""Embedding service client used by the semantic cache."""

from typing import List, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chatbot.errors import EmbeddingServiceError

logger = structlog.get_logger(__name__)

MAX_INPUT_CHARS = 8000


class _RetryableEmbeddingError(Exception):
    pass


class EmbeddingClient:
    """OpenAI-compatible ``/embeddings`` client returning one fixed-length vector per text."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        model: str = "text-embedding-3-small",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def embed(self, text: str) -> List[float]:
        """Embed ``text``. Raises EmbeddingServiceError once retries are exhausted."""
        if not self.api_key:
            raise EmbeddingServiceError("Embedding API key not configured")

        try:
            embedding = await self._post(text)
        except _RetryableEmbeddingError as e:
            logger.error("Embedding service unavailable", error=str(e))
            raise EmbeddingServiceError(f"Embedding service unavailable: {e}") from e

        logger.debug("Embedding generated", model=self.model, input_length=len(text), embedding_dim=len(embedding))
        return embedding

    @retry(
        retry=retry_if_exception_type(_RetryableEmbeddingError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, text: str) -> List[float]:
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds), transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/embeddings",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "input": text[:MAX_INPUT_CHARS],
                        "encoding_format": "float",
                    },
                )
        except httpx.HTTPError as e:
            raise _RetryableEmbeddingError(str(e)) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableEmbeddingError(f"status {response.status_code}")
        if response.status_code != 200:
            logger.error("Embedding request rejected", status=response.status_code, response=response.text[:200])
            raise EmbeddingServiceError(f"Embedding request rejected with status {response.status_code}")

        try:
            return [float(x) for x in response.json()["data"][0]["embedding"]]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise EmbeddingServiceError("Malformed embedding response") from e
