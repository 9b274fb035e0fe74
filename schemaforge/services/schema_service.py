"""
Client for the external scraping and AI schema-generation providers.

Both providers are black boxes behind two contracts:

* ``scrape(url) -> ScrapedPage`` (title, content, markdown, links)
* ``generate_schema(content, keywords) -> dict`` (a JSON-LD object)

``generate_for_url`` chains them and is the per-URL processor handed to the
batch scheduler. Uses httpx for async HTTP and Tenacity to retry transport
errors and rate limiting (HTTP 429).
"""

import json
from typing import Any

import httpx
from pydantic import BaseModel, Field
from tenacity import (
    RetryCallState,
    before_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential,
)

from schemaforge.core.config import Settings, get_settings
from schemaforge.utils.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    RateLimitedError,
    SchemaGenerationError,
    ScrapeError,
)
from schemaforge.utils.logging import get_logger

logger = get_logger(__name__)

# Characters of page content forwarded to the model
MAX_CONTENT_CHARS = 12000

SYSTEM_PROMPT = (
    "You generate schema.org structured data. Reply with a single JSON-LD object "
    'that has "@context" set to "https://schema.org" and an appropriate "@type".'
)


class ScrapedPage(BaseModel):
    """Content returned by the scraping provider."""

    url: str
    title: str = ""
    content: str = ""
    markdown: str = ""
    links: list[str] = Field(default_factory=list)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with the exception that triggered them."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "Retrying external call",
        function=getattr(retry_state.fn, "__name__", str(retry_state.fn)),
        attempt=retry_state.attempt_number,
        next_wait=f"{retry_state.next_action.sleep:.2f}s" if retry_state.next_action else "N/A",
        error=str(exception) if exception else "unknown",
    )


def _is_transient(exception: BaseException) -> bool:
    """Transport errors, rate limiting and upstream 5xx are worth another attempt."""
    if isinstance(exception, (httpx.TransportError, RateLimitedError)):
        return True
    if isinstance(exception, ExternalServiceError):
        return exception.details.get("upstream_status", 0) >= 500
    return False


def create_retry_decorator(max_attempts: int = 3, max_delay: float = 60):
    """
    Build the Tenacity policy used for provider calls.

    Random exponential backoff, stopping at whichever of ``max_attempts``
    or ``max_delay`` seconds comes first. The last exception is re-raised.
    """
    return retry(
        stop=(stop_after_attempt(max_attempts) | stop_after_delay(max_delay)),
        wait=wait_random_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_transient),
        before_sleep=_log_retry,
        before=before_log(logger, log_level=10),
        reraise=True,
    )


class SchemaGenerationService:
    """
    Scrape a page and ask the AI provider for its JSON-LD.

    Usage:
        service = SchemaGenerationService()
        schema = await service.generate_for_url("https://example.com", ["seo"])
        await service.close()
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None
        self._post_json = create_retry_decorator(
            max_attempts=self._settings.external_max_retries,
            max_delay=self._settings.external_timeout,
        )(self._post_json_once)

    async def _log_request(self, request: httpx.Request) -> None:
        """Event hook to log outgoing requests."""
        logger.debug("HTTP request", method=request.method, url=str(request.url))

    async def _log_response(self, response: httpx.Response) -> None:
        """Event hook to log incoming responses."""
        logger.debug(
            "HTTP response",
            status_code=response.status_code,
            url=str(response.url),
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                http2=True,
                follow_redirects=True,
                headers={
                    "User-Agent": f"{self._settings.app_name}/1.0",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=float(self._settings.external_timeout),
                    write=10.0,
                    pool=5.0,
                ),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
                event_hooks={
                    "request": [self._log_request],
                    "response": [self._log_response],
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post_json_once(
        self,
        url: str,
        payload: dict[str, Any],
        api_key: str,
        service: str,
    ) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
        )

        if response.status_code == 429:
            raise RateLimitedError(
                f"{service} rate limit reached",
                service=service,
                url=url,
                status_code=429,
            )

        if response.status_code >= 400:
            error_cls = ScrapeError if service == "scrape" else SchemaGenerationError
            logger.warning(
                "External API error response",
                service=service,
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            raise error_cls(
                f"{service} request failed with status {response.status_code}",
                service=service,
                url=url,
                status_code=response.status_code,
            )

        return response.json()

    async def scrape(self, url: str) -> ScrapedPage:
        """
        Fetch page content through the scraping provider.

        Raises:
            ConfigurationError: No scraping API key configured
            ScrapeError: Provider failure or empty page
        """
        api_key = self._settings.scrape_api_key
        if not api_key:
            raise ConfigurationError("Scraping API key is not configured")

        try:
            body = await self._post_json(
                f"{self._settings.scrape_api_url.rstrip('/')}/scrape",
                {"url": url, "formats": ["markdown", "links"], "onlyMainContent": True},
                api_key,
                "scrape",
            )
        except httpx.HTTPError as e:
            raise ScrapeError(f"Scrape request failed: {e}", service="scrape", url=url) from e

        data = body.get("data") or {}
        if not body.get("success", True) or not data:
            raise ScrapeError(
                body.get("error") or "Scraping provider returned no data",
                service="scrape",
                url=url,
            )

        metadata = data.get("metadata") or {}
        markdown = data.get("markdown") or ""
        return ScrapedPage(
            url=url,
            title=metadata.get("title") or "",
            content=data.get("content") or markdown,
            markdown=markdown,
            links=[link for link in data.get("links") or [] if isinstance(link, str)],
        )

    async def generate_schema(
        self,
        content: str,
        keywords: list[str] | None = None,
        *,
        url: str | None = None,
        title: str | None = None,
    ) -> dict[str, Any]:
        """
        Ask the AI provider for a JSON-LD object describing ``content``.

        Raises:
            ConfigurationError: No AI API key configured
            SchemaGenerationError: Provider failure or unparsable answer
        """
        api_key = self._settings.ai_api_key
        if not api_key:
            raise ConfigurationError("AI API key is not configured")

        user_prompt = "\n".join(
            part
            for part in (
                f"URL: {url}" if url else "",
                f"Title: {title}" if title else "",
                f"Target keywords: {', '.join(keywords)}" if keywords else "",
                "Content:",
                content[:MAX_CONTENT_CHARS],
            )
            if part
        )

        try:
            body = await self._post_json(
                f"{self._settings.ai_api_url.rstrip('/')}/chat/completions",
                {
                    "model": self._settings.ai_model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": user_prompt},
                    ],
                    "response_format": {"type": "json_object"},
                    "temperature": 0.2,
                },
                api_key,
                "ai",
            )
        except httpx.HTTPError as e:
            raise SchemaGenerationError(
                f"AI request failed: {e}", service="ai", url=url
            ) from e

        return parse_schema_answer(body, url=url)

    async def generate_for_url(
        self, url: str, keywords: list[str] | None = None
    ) -> dict[str, Any]:
        """Scrape ``url`` and generate its schema. Used as the bulk URL processor."""
        page = await self.scrape(url)
        if not page.content.strip():
            raise ScrapeError("Page has no extractable content", service="scrape", url=url)
        return await self.generate_schema(page.content, keywords, url=url, title=page.title)


def parse_schema_answer(body: dict[str, Any], url: str | None = None) -> dict[str, Any]:
    """
    Extract the JSON-LD object from a chat-completion response.

    Tolerates answers wrapped in a Markdown code fence.
    """
    try:
        text = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise SchemaGenerationError("Malformed AI response", service="ai", url=url) from e

    text = (text or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]

    try:
        schema = json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaGenerationError(
            "AI response is not valid JSON", service="ai", url=url
        ) from e

    if not isinstance(schema, dict):
        raise SchemaGenerationError("AI response is not a JSON object", service="ai", url=url)

    schema.setdefault("@context", "https://schema.org")
    return schema
