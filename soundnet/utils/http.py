"""HTTP and backend I/O utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar, Union

import httpx

from soundnet.core.errors import BackendUnavailableError, PersistenceError

T = TypeVar("T")
logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    passthrough_statuses: Iterable[int] = (),
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying transport errors and 429/5xx responses.

    Responses whose status is in ``passthrough_statuses`` are returned as-is so
    the caller can react (for example, refresh a token on 401).
    """
    config = retry_config or RetryConfig()
    passthrough = frozenset(passthrough_statuses)
    attempt = 0
    last_exception: Exception | None = None

    while attempt < config.attempts:
        try:
            response = await func(*args, **kwargs)
            if response.status_code in passthrough:
                return response
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code not in _RETRYABLE_STATUS:
                raise
            last_exception = exc
        except httpx.TransportError as exc:
            last_exception = exc
        attempt += 1
        if attempt >= config.attempts:
            break
        await asyncio.sleep(config.backoff_seconds * attempt)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Request failed without raising an exception")


async def call_with_retry(
    func: Callable[..., Union[T, Awaitable[T]]],
    *args: Any,
    retry_config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Run a document backend call, retrying ``BackendUnavailableError``.

    Exhausting the attempts raises ``PersistenceError`` chained to the last
    transient failure.
    """
    config = retry_config or RetryConfig()
    last_exception: BackendUnavailableError | None = None

    for attempt in range(1, config.attempts + 1):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result  # type: ignore[return-value]
        except BackendUnavailableError as exc:
            last_exception = exc
            logger.warning(
                "Backend call %s failed (attempt %s/%s): %s",
                getattr(func, "__name__", func),
                attempt,
                config.attempts,
                exc,
            )
            if attempt < config.attempts:
                await asyncio.sleep(config.backoff_seconds * attempt)

    raise PersistenceError(
        f"Backend call failed after {config.attempts} attempts."
    ) from last_exception


__all__ = ["RetryConfig", "call_with_retry", "request_with_retry"]
