"""Retrying JSON fetcher shared by the standings and picks collectors."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
BACKOFF_INITIAL = 0.6  # seconds, doubled per attempt
BACKOFF_MAX = 15.0
BACKOFF_JITTER = 0.2  # +/- 20%
ERROR_BODY_LIMIT = 300  # bytes of response body kept on FetchError

DEFAULT_HEADERS = {"Accept": "application/json"}


class FetchError(Exception):
    """A GET request that could not produce a JSON payload."""

    def __init__(
        self,
        url: str,
        status: int | None = None,
        reason: str = "",
        body: str = "",
        detail: str = "",
    ) -> None:
        self.url = url
        self.status = status
        self.reason = reason
        self.body = body
        self.attempts = 1
        if status is not None:
            message = f"HTTP {status} ({reason}) for {url}. Body: {body}"
        else:
            message = f"Request failed for {url}: {detail}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """429, any 5xx and transport errors (no status) are worth retrying."""
        if self.status is None:
            return True
        return self.status == 429 or 500 <= self.status <= 599


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an error should trigger a retry."""
    return isinstance(exception, FetchError) and exception.retryable


class wait_jittered_exponential(wait_base):
    """Capped exponential backoff scaled by a uniform +/- jitter factor."""

    def __init__(
        self,
        initial: float = BACKOFF_INITIAL,
        maximum: float = BACKOFF_MAX,
        jitter: float = BACKOFF_JITTER,
        rng: random.Random | None = None,
    ) -> None:
        self.base = wait_exponential(multiplier=initial, max=maximum)
        self.jitter = jitter
        self.rng = rng or random.Random()

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.base(retry_state) * self.rng.uniform(1 - self.jitter, 1 + self.jitter)
        return round(delay, 3)


class RetryingFetcher:
    """
    GET-and-decode-JSON with bounded retries.

    Every call makes at most ``max_attempts`` requests. Retryable failures
    (429, 5xx, timeouts and connection errors) back off exponentially from
    600ms up to 15s with +/-20% jitter. Anything else fails on the first
    attempt. Exhausted or non-retryable calls raise ``FetchError``.
    """

    def __init__(
        self,
        user_agent: str = "esf-eo",
        timeout: float = 30.0,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            user_agent: User-Agent sent with every request
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per URL, including the first
            sleep: Coroutine used for backoff waits (tests pass a recorder)
            rng: Random source for jitter
        """
        self.headers = {**DEFAULT_HEADERS, "User-Agent": user_agent}
        self.timeout = timeout
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._wait = wait_jittered_exponential(rng=rng)
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization, coroutine-safe)."""
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        async with self._lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self) -> "RetryingFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def _log_retry(self, retry_state: RetryCallState) -> None:
        """Emit one warning per scheduled retry."""
        url = retry_state.args[0] if retry_state.args else "?"
        error = retry_state.outcome.exception() if retry_state.outcome else None
        status = getattr(error, "status", None)
        delay_ms = round((retry_state.next_action.sleep if retry_state.next_action else 0) * 1000)
        cause = f"HTTP {status}" if status is not None else type(error).__name__
        logger.warning(
            f"Retrying ({retry_state.attempt_number}/{self.max_attempts}) {url} "
            f"after {delay_ms}ms ({cause})"
        )

    async def _attempt(self, url: str, headers: dict[str, str] | None) -> Any:
        """Single request. Raises FetchError on any non-2xx or transport problem."""
        client = await self._get_client()
        try:
            response = await client.get(url, headers=headers)
        except httpx.RequestError as e:
            # Transport failures and undecodable (e.g. corrupt gzip) bodies
            raise FetchError(url, detail=f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            body = response.content[:ERROR_BODY_LIMIT].decode("utf-8", errors="replace")
            raise FetchError(url, response.status_code, response.reason_phrase, body)

        try:
            return response.json()
        except ValueError as e:
            # Bad JSON or bad UTF-8; carries the 2xx status, so it is not retried
            raise FetchError(
                url, response.status_code, response.reason_phrase, "invalid JSON"
            ) from e

    async def fetch(self, url: str, headers: dict[str, str] | None = None) -> Any:
        """
        Fetch ``url`` and return the decoded JSON body.

        Args:
            url: Absolute URL to GET
            headers: Extra headers merged over the client defaults

        Returns:
            Decoded JSON payload

        Raises:
            FetchError: Non-retryable status, or retries exhausted
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable_error),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return await retrying(self._attempt, url, headers)
        except FetchError as e:
            e.attempts = retrying.statistics.get("attempt_number", 1)
            raise
