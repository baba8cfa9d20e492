"""AI metadata extractors.

:class:`HttpMetadataExtractor` talks to any OpenAI-compatible
chat-completions endpoint with retries and exponential backoff. Every
failure surfaces as :class:`AIServiceError`.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from docfusion.errors import AIServiceError
from docfusion.utils.config import AIConfig
from docfusion.utils.logger import get_logger

from .prompts import AIContext, build_messages
from .response import AIMetadata, parse_ai_response

logger = get_logger(__name__)

_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass
class AIRequestOptions:
    """Per-call overrides of the configured model settings."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class MetadataExtractor(ABC):
    """Source of AI-derived document metadata."""

    @abstractmethod
    async def extract(
        self,
        text: str,
        context: AIContext | None = None,
        options: AIRequestOptions | None = None,
    ) -> AIMetadata:
        """Extract metadata from document text.

        Raises:
            AIServiceError: If the service fails or its reply is unusable.
        """

    async def close(self) -> None:
        """Release network resources."""


class HttpMetadataExtractor(MetadataExtractor):
    """Chat-completions client for metadata extraction.

    Args:
        config: AI service configuration.
        client: Pre-built HTTP client, mainly for tests. When omitted a
            client is created and owned by this extractor.
    """

    def __init__(
        self, config: AIConfig, client: httpx.AsyncClient | None = None
    ) -> None:
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_s
        )

    def _backoff(self, attempt: int) -> float:
        delay = self.config.retry_delay_s * 2 ** (attempt - 1)
        return min(delay, self.config.max_retry_delay_s)

    async def _post(self, body: dict[str, object]) -> dict[str, object]:
        headers = {"Authorization": f"Bearer {self.config.api_key}"}
        last_error = "no attempt made"

        for attempt in range(1, self.config.max_retries + 1):
            try:
                response = await self._client.post(
                    "/chat/completions", json=body, headers=headers
                )
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code < 400:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise AIServiceError(
                            f"AI service returned non-JSON: {exc}"
                        ) from exc
                if response.status_code not in _RETRYABLE_STATUS:
                    raise AIServiceError(
                        f"AI service rejected request: HTTP {response.status_code} "
                        f"{response.text[:200]}"
                    )
                last_error = f"HTTP {response.status_code}"

            if attempt < self.config.max_retries:
                delay = self._backoff(attempt)
                logger.warning(
                    "AI request attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    self.config.max_retries,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        raise AIServiceError(
            f"AI service failed after {self.config.max_retries} attempts: {last_error}"
        )

    async def extract(
        self,
        text: str,
        context: AIContext | None = None,
        options: AIRequestOptions | None = None,
    ) -> AIMetadata:
        """Ask the model for metadata and validate its reply.

        Args:
            text: Document text, truncated to the configured budget.
            context: File details and locally extracted entities.
            options: Per-call model overrides.

        Returns:
            Normalized metadata.

        Raises:
            AIServiceError: On missing credentials, exhausted retries,
                non-retryable HTTP errors or an unusable reply.
        """
        if not self.config.api_key:
            raise AIServiceError("AI API key is not configured")
        options = options or AIRequestOptions()

        body: dict[str, object] = {
            "model": options.model or self.config.model,
            "messages": build_messages(text, context, self.config.max_prompt_chars),
            "temperature": (
                options.temperature
                if options.temperature is not None
                else self.config.temperature
            ),
            "max_tokens": options.max_tokens or self.config.max_tokens,
        }
        data = await self._post(body)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AIServiceError(f"Unexpected AI response shape: {exc}") from exc
        if not isinstance(content, str):
            raise AIServiceError(
                f"AI response content is {type(content).__name__}, not text"
            )

        metadata = parse_ai_response(content)
        logger.info(
            "AI extraction finished with confidence %.2f", metadata.overall_confidence
        )
        return metadata

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
