"""
Base client for external data source clients.

Provides: rate limiting (fixed-window token bucket), retry with backoff,
structured logging, and HTTP session management.
"""

import asyncio
import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel, Field

from paper_writer.constants import (
    DEFAULT_TIMEOUT,
    ERROR_BODY_PREVIEW,
    PUBMED_BASE_DELAY,
    PUBMED_MAX_DELAY,
    PUBMED_MAX_RETRIES,
    PUBMED_MAX_RPS,
    RATE_LIMIT_WINDOW,
)
from paper_writer.utils.retry import RetryPolicy, parse_retry_after

logger = logging.getLogger("paper_writer.data_sources")

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RateLimitConfig(BaseModel):
    """Token-bucket rate limiter settings."""

    requests_per_window: int = Field(default=PUBMED_MAX_RPS, ge=1)
    window_seconds: float = Field(default=RATE_LIMIT_WINDOW, gt=0)


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy.exponential(
        max_retries=PUBMED_MAX_RETRIES,
        base_delay=PUBMED_BASE_DELAY,
        max_delay=PUBMED_MAX_DELAY,
    )


class ClientConfig(BaseModel):
    """Top-level config aggregating retry, rate limit, and timeout."""

    retry: RetryPolicy = Field(default_factory=default_retry_policy)
    rate_limit: RateLimitConfig = RateLimitConfig()
    timeout_seconds: float = DEFAULT_TIMEOUT

    def is_retryable(self, status: int) -> bool:
        return status == 429 or 500 <= status < 600


# ---------------------------------------------------------------------------
# Rate limiter (fixed-window token bucket)
# ---------------------------------------------------------------------------


class TokenBucketRateLimiter:
    """
    Fixed-window token bucket.

    At most ``capacity`` tasks start per window.  ``schedule()`` never blocks:
    it queues the task and returns a future for the task's own outcome.  A
    timer resets the bucket to full every ``window`` seconds and drains the
    queue in submission order.  There is no smoothing: a full bucket is spent
    as a burst and the rest of the window stays silent.

    The tokens/queue pair is only touched from ``schedule()`` and the timer
    callback, both of which run on the event loop thread.
    """

    def __init__(self, config: RateLimitConfig):
        self.capacity = config.requests_per_window
        self.window = config.window_seconds
        self.tokens = self.capacity
        self.queue: deque[tuple[Callable[[], Any], asyncio.Future]] = deque()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task] = set()

    def schedule(self, task: Callable[[], Awaitable[T] | T]) -> "asyncio.Future[T]":
        """Queue ``task`` and return a future settled with its result or error."""
        loop = asyncio.get_running_loop()
        self._ensure_timer(loop)
        future: asyncio.Future = loop.create_future()
        self.queue.append((task, future))
        self._drain()
        return future

    def refill(self) -> None:
        """Reset the bucket to capacity and start whatever fits."""
        self.tokens = self.capacity
        self._drain()

    def close(self) -> None:
        """Stop the refill timer.  Queued tasks stay queued."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._loop = None

    def _ensure_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None and self._loop is loop:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._loop = loop
        self._timer = loop.call_later(self.window, self._tick)

    def _tick(self) -> None:
        if self._loop is None:
            return
        self._timer = self._loop.call_later(self.window, self._tick)
        self.refill()

    def _drain(self) -> None:
        while self.tokens > 0 and self.queue:
            task, future = self.queue.popleft()
            if future.done():
                # Caller cancelled before the task started; no token spent.
                continue
            self.tokens -= 1
            runner = asyncio.ensure_future(self._run(task, future))
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)
            future.add_done_callback(lambda f, r=runner: r.cancel() if f.cancelled() else None)

    @staticmethod
    async def _run(task: Callable[[], Any], future: asyncio.Future) -> None:
        try:
            result = task()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)


# ---------------------------------------------------------------------------
# Request context (for structured logging)
# ---------------------------------------------------------------------------


class RequestContext(BaseModel):
    """Metadata attached to every outgoing request for logging."""

    source: str  # e.g. "pubmed"
    method: str  # e.g. "search"
    params: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DataSourceError(Exception):
    """Base exception for data source failures."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")


class RateLimitError(DataSourceError):
    """Raised when the remote keeps answering 429 and retries are exhausted."""

    pass


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


class BaseClient(ABC):
    """
    Abstract base for REST data source clients.

    Subclasses implement `_source_name` and their own typed methods that
    call `_rest_get()` (JSON) or `_rest_get_xml()` (raw text).
    """

    def __init__(self, config: ClientConfig | None = None):
        self.config = config or ClientConfig()
        self.rate_limiter = TokenBucketRateLimiter(self.config.rate_limit)
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def _source_name(self) -> str:
        """Identifier for this data source, e.g. 'pubmed'."""
        ...

    # -- Session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        self.rate_limiter.close()
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Core request with rate limiting + retry -----------------------------

    async def _request(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        context: RequestContext | None = None,
    ) -> str:
        """
        Issue a GET through the rate limiter and return the response body.

        429 and 5xx responses, timeouts and connection errors are retried
        according to ``config.retry``; a server Retry-After (seconds) takes
        precedence over the computed backoff.  Any other non-2xx status
        raises immediately.  When retries run out the last failure is raised.
        """
        ctx = context or RequestContext(source=self._source_name, method="unknown")
        policy = self.config.retry
        session = await self._get_session()

        get_kwargs: dict[str, Any] = {"params": params, "headers": headers}
        if timeout is not None:
            get_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        def do_fetch():
            return session.get(url, **get_kwargs)

        last_error = DataSourceError(ctx.source, "No request attempted")
        start = time.monotonic()

        for attempt in range(1, policy.max_attempts + 1):
            retry_after: float | None = None
            logger.info(
                "Request [%s.%s] attempt=%d url=%s",
                ctx.source,
                ctx.method,
                attempt,
                url,
            )
            try:
                resp = await self.rate_limiter.schedule(do_fetch)
                body = await resp.text()

            except asyncio.TimeoutError:
                elapsed = time.monotonic() - start
                last_error = DataSourceError(ctx.source, f"Timeout after {elapsed:.1f}s")
                logger.warning(
                    "Timeout [%s.%s] attempt=%d elapsed=%.1fs",
                    ctx.source,
                    ctx.method,
                    attempt,
                    elapsed,
                )

            except aiohttp.ClientError as e:
                last_error = DataSourceError(ctx.source, f"Connection error: {e}")
                logger.warning(
                    "Connection error [%s.%s] attempt=%d: %s",
                    ctx.source,
                    ctx.method,
                    attempt,
                    e,
                )

            else:
                if 200 <= resp.status < 300:
                    logger.info(
                        "Success [%s.%s] status=%d elapsed=%.2fs",
                        ctx.source,
                        ctx.method,
                        resp.status,
                        time.monotonic() - start,
                    )
                    return body

                preview = body[:ERROR_BODY_PREVIEW]
                if not self.config.is_retryable(resp.status):
                    raise DataSourceError(
                        ctx.source,
                        f"HTTP {resp.status}: {preview}",
                        status_code=resp.status,
                    )

                logger.warning(
                    "Retryable %d from %s.%s: %s",
                    resp.status,
                    ctx.source,
                    ctx.method,
                    preview,
                )
                error_cls = RateLimitError if resp.status == 429 else DataSourceError
                last_error = error_cls(
                    ctx.source,
                    f"HTTP {resp.status}: {preview}",
                    status_code=resp.status,
                )
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))

            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt, retry_after)
                logger.debug(
                    "Backing off %.2fs before attempt %d [%s.%s]",
                    delay,
                    attempt + 1,
                    ctx.source,
                    ctx.method,
                )
                await asyncio.sleep(delay)

        logger.error(
            "All retries exhausted [%s.%s] after %.1fs: %s",
            ctx.source,
            ctx.method,
            time.monotonic() - start,
            last_error,
        )
        raise last_error

    # -- Convenience methods for subclasses ----------------------------------

    async def _rest_get(
        self,
        url: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
        context: RequestContext | None = None,
    ) -> Any:
        """GET and decode a JSON body.  Malformed JSON is fatal, never retried."""
        ctx = context or RequestContext(source=self._source_name, method="unknown")
        body = await self._request(url, params=params, timeout=timeout, context=ctx)
        try:
            return json.loads(body)
        except ValueError as e:
            raise DataSourceError(
                ctx.source,
                f"Failed to parse JSON: {e}. Body: {body[:ERROR_BODY_PREVIEW]}",
            ) from e

    async def _rest_get_xml(
        self,
        url: str,
        params: dict[str, Any],
        *,
        timeout: float | None = None,
        context: RequestContext | None = None,
    ) -> str:
        """GET and return the raw body (XML for EFetch)."""
        return await self._request(url, params=params, timeout=timeout, context=context)

    # -- Query string helper -------------------------------------------------

    @staticmethod
    def clean_params(params: dict[str, Any]) -> dict[str, str]:
        """Drop None/empty values and stringify the rest for the query string."""
        return {k: str(v) for k, v in params.items() if v is not None and v != ""}
