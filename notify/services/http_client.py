"""HTTP helpers with retry/backoff for provider integrations."""

import random
import time
from typing import Any, Callable, Dict, Optional, Set

import httpx

from ..utils.logging_config import get_logger, log_provider_call
from .exceptions import ProviderError, ProviderNotConfigured

logger = get_logger("providers.http")

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


def request_with_retries(
    request_fn: Callable[[], httpx.Response],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: Optional[Set[int]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> httpx.Response:
    """Execute an HTTP request with exponential backoff retries."""
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = min(max_delay, base_delay * (2**attempt))
            if delay:
                delay = delay + random.uniform(0, delay / 2)
            logger.warning(
                "HTTP request failed, retrying",
                extra={"event": "http_retry", "attempt": attempt + 1, "error": str(exc)},
            )
            if delay:
                sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = min(max_delay, base_delay * (2**attempt))
            if delay:
                delay = delay + random.uniform(0, delay / 2)
            logger.warning(
                "HTTP request returned %s, retrying",
                response.status_code,
                extra={"event": "http_retry", "attempt": attempt + 1, "status_code": response.status_code},
            )
            if delay:
                sleep(delay)
            continue

        return response

    return response


class ProviderClient:
    """Base for the JSON-over-HTTP provider clients."""

    provider = "provider"

    def __init__(
        self,
        base_url: str,
        timeout: float = 20.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, headers=headers, transport=transport)

    @property
    def configured(self) -> bool:
        return True

    def require_configured(self):
        if not self.configured:
            raise ProviderNotConfigured(self.provider)

    def request(self, method: str, path: str, operation: str, **kwargs: Any) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            ProviderError: on transport failure or a non-2xx response
        """
        self.require_configured()
        try:
            response = request_with_retries(
                lambda: self._client.request(method, path, **kwargs),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
            )
        except httpx.RequestError as exc:
            log_provider_call(self.provider, operation, False, error=str(exc))
            raise ProviderError(self.provider, f"{operation} failed: {exc}") from exc

        if response.is_error:
            detail = self.error_detail(response)
            log_provider_call(self.provider, operation, False, status_code=response.status_code, error=detail)
            raise ProviderError(self.provider, f"{operation} failed: {detail}", response.status_code)

        log_provider_call(self.provider, operation, True, status_code=response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def error_detail(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or f"HTTP {response.status_code}"
        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                return errors[0].get("description") or errors[0].get("message") or str(errors[0])
            if body.get("error"):
                error = body["error"]
                return error.get("message", str(error)) if isinstance(error, dict) else str(error)
        return f"HTTP {response.status_code}"

    def close(self):
        self._client.close()
