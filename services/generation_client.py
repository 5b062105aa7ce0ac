"""Upstream generation service client for the Explainer Relay.

This module opens the streaming generation call. Reading and interpreting
the streamed frames is the relay's job.
"""

import asyncio
import json
from typing import Any, Dict, Optional

import httpx

from config import ApplicationConfig
from models import ErrorKind, GenerationError, Result
from utils import create_contextual_logger, get_correlation_id
from .health_metrics import upstream_errors

RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED", "RATE_LIMIT_EXCEEDED"}


def _first_object(data: Any) -> Any:
    if isinstance(data, list) and data:
        return data[0]
    return data


def upstream_error_message(data: Any) -> Optional[str]:
    """Extract the message of an upstream ``{"error": {...}}`` body."""
    data = _first_object(data)
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or error.get("status")
        return str(message) if message else "Upstream generation error"
    if isinstance(error, str) and error:
        return error
    return None


def is_rate_limited(status_code: Optional[int], data: Any) -> bool:
    if status_code == 429:
        return True
    data = _first_object(data)
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        error = data["error"]
        return error.get("code") == 429 or error.get("status") in RATE_LIMIT_STATUSES
    return False


def rejected_error(message: str, status_code: Optional[int], data: Any) -> GenerationError:
    return GenerationError.of(
        ErrorKind.UPSTREAM_REJECTED,
        message,
        status_code=429 if is_rate_limited(status_code, data) else 500,
    )


class GenerationClient:
    """Async client for the upstream streaming generation endpoint."""

    def __init__(self, config: ApplicationConfig, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.logger = create_contextual_logger(__name__, service="generation_client")
        self._client = http_client
        self._owns_client = http_client is None

    async def start(self) -> None:
        """Create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.upstream_timeout_seconds),
                headers={"User-Agent": f"Explainer-Relay/{self.config.app_version}"},
            )
            self._owns_client = True

    async def stop(self) -> None:
        """Close the shared HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            self.logger.info("Generation client closed")

    @property
    def endpoint(self) -> str:
        return (
            f"{self.config.generation_base_url}/v1beta/models/"
            f"{self.config.generation_model}:streamGenerateContent"
        )

    def build_payload(self, prompt: str, max_tokens: int) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.generation_temperature,
                "maxOutputTokens": max_tokens,
            },
        }

    async def open_stream(self, prompt: str, max_tokens: int) -> Result[httpx.Response]:
        """Open the streaming call and return the response once headers arrive.

        On success the caller owns the response and must ``aclose()`` it.
        """
        if self._client is None:
            await self.start()

        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            self.config.generation_api_key_header: self.config.generation_api_key,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        request = self._client.build_request(
            "POST",
            self.endpoint,
            params={"alt": "sse"},
            json=self.build_payload(prompt, max_tokens),
            headers=headers,
        )

        try:
            response = await asyncio.wait_for(
                self._client.send(request, stream=True),
                timeout=self.config.upstream_timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            upstream_errors.labels(kind=ErrorKind.UPSTREAM_TIMEOUT.value).inc()
            self.logger.warning(
                "Upstream generation call timed out",
                operationName="open_stream",
                timeout_seconds=self.config.upstream_timeout_seconds,
                error=str(e) or type(e).__name__,
            )
            return Result.failure(GenerationError.of(
                ErrorKind.UPSTREAM_TIMEOUT,
                "The generation service did not respond in time",
            ))
        except httpx.TransportError as e:
            upstream_errors.labels(kind=ErrorKind.UPSTREAM_TIMEOUT.value).inc()
            self.logger.warning(
                "Upstream generation service unreachable",
                operationName="open_stream",
                error=str(e) or type(e).__name__,
            )
            return Result.failure(GenerationError.of(
                ErrorKind.UPSTREAM_TIMEOUT,
                "The generation service is unavailable",
            ))

        if response.status_code >= 400:
            try:
                body = await response.aread()
            finally:
                await response.aclose()
            try:
                data = json.loads(body) if body else None
            except ValueError:
                data = None
            message = upstream_error_message(data) or f"HTTP {response.status_code}"
            upstream_errors.labels(kind=ErrorKind.UPSTREAM_REJECTED.value).inc()
            self.logger.warning(
                "Upstream generation call rejected",
                operationName="open_stream",
                status_code=response.status_code,
                error=message,
            )
            return Result.failure(rejected_error(message, response.status_code, data))

        self.logger.debug(
            "Upstream stream opened",
            operationName="open_stream",
            status_code=response.status_code,
            max_tokens=max_tokens,
        )
        return Result.success(response)
