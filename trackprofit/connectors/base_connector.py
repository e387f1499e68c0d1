"""
Base connector class for external providers

Every connector normalizes wire failures into the typed errors from
``trackprofit.errors`` and retries only transient ones.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from trackprofit.config import get_settings
from trackprofit.errors import (
    AuthFailed,
    InvalidInput,
    NotConfigured,
    TrackProfitError,
    TransientError,
)
from trackprofit.utils.logger import log
from trackprofit.utils.retry import RetryStats, retry_call

settings = get_settings()

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)
AUTH_STATUS_CODES = (401, 403)


class ResultStatus(str, Enum):
    OK = "ok"
    AUTH_FAILED = "auth_failed"
    TRANSIENT = "transient"
    INVALID_INPUT = "invalid_input"
    NOT_CONFIGURED = "not_configured"


@dataclass
class AdapterResult:
    """Outcome of one adapter call, kept so callers can merge partial data."""

    status: ResultStatus
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK

    @classmethod
    def from_error(cls, error: Exception) -> "AdapterResult":
        if isinstance(error, AuthFailed):
            status = ResultStatus.AUTH_FAILED
        elif isinstance(error, NotConfigured):
            status = ResultStatus.NOT_CONFIGURED
        elif isinstance(error, InvalidInput):
            status = ResultStatus.INVALID_INPUT
        else:
            status = ResultStatus.TRANSIENT
        return cls(status=status, error=str(error))


async def capture(operation: Awaitable) -> AdapterResult:
    """Await an adapter coroutine and fold typed failures into a result."""
    try:
        return AdapterResult(status=ResultStatus.OK, data=await operation)
    except TrackProfitError as e:
        return AdapterResult.from_error(e)


class BaseConnector:
    """Shared HTTP plumbing, error normalization and retry policy."""

    RETRY_MAX_ATTEMPTS = settings.adapter_max_attempts
    RETRY_BASE_DELAY = settings.adapter_base_delay
    RETRY_MAX_DELAY = settings.adapter_max_delay
    REQUEST_TIMEOUT = 30.0

    def __init__(self, name: str):
        self.name = name
        self.last_call: Optional[datetime] = None
        self.call_count = 0
        self.error_count = 0
        self.retry_count = 0

    async def _retry_operation(
        self,
        operation: Callable[[], Awaitable],
        operation_name: str = "operation",
    ) -> Any:
        """Run ``operation`` with the connector's retry policy."""
        stats = RetryStats()
        started = time.time()
        self.call_count += 1
        try:
            return await retry_call(
                operation,
                max_attempts=self.RETRY_MAX_ATTEMPTS,
                base_delay=self.RETRY_BASE_DELAY,
                max_delay=self.RETRY_MAX_DELAY,
                operation_name=f"{self.name} {operation_name}",
                stats=stats,
            )
        except TrackProfitError:
            self.error_count += 1
            raise
        finally:
            self.retry_count += max(stats.attempts - 1, 0)
            self.last_call = datetime.utcnow()
            log.debug(f"{self.name} {operation_name} took {time.time() - started:.2f}s ({stats.attempts} attempts)")

    def _auth_error(self, message: str) -> AuthFailed:
        return AuthFailed(message, provider=self.name)

    def _normalize_status(self, status: int, body: str) -> Optional[TrackProfitError]:
        """Map an HTTP status onto the error taxonomy; None for success."""
        if status < 400:
            return None
        message = self._error_message(body)
        if status in AUTH_STATUS_CODES:
            return self._auth_error(f"{self.name} rejected credentials ({status}): {message}")
        if status in RETRYABLE_STATUS_CODES:
            return TransientError(f"{self.name} returned {status}: {message}", provider=self.name)
        return InvalidInput(f"{self.name} rejected request ({status}): {message}", provider=self.name)

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
    ) -> Any:
        """Single HTTP exchange returning decoded JSON, with normalized errors."""
        timeout = aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=headers, params=params, json=json_body
                ) as response:
                    text = await response.text()
                    error = self._normalize_status(response.status, text)
                    if error is not None:
                        raise error
                    if not text:
                        return None
                    try:
                        return await response.json(content_type=None)
                    except ValueError:
                        raise TransientError(
                            f"{self.name} returned a non-JSON body", provider=self.name
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(f"{self.name} request failed: {e}", provider=self.name)

    def _error_message(self, body: str) -> str:
        return (body or "")[:300]
