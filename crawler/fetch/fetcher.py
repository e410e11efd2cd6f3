"""Source fetcher: one document per call, bounded by timeout and retries.

Transient failures (timeouts, connection errors, 5xx, 429) are retried with
exponential backoff; a 429 ``Retry-After`` hint overrides the backoff (capped
by ``max_retry_after_seconds``). Other 4xx statuses, invalid URLs, hosts
that do not resolve and bodies that fail to decode are terminal. ``fetch``
never raises for these: it returns a ``FetchError`` carrying the last status
and cause.
"""

import asyncio
import logging
import socket
import time
from collections.abc import Awaitable, Callable
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crawler.core.config import FetchConfig, FetchStrategy, Source
from crawler.core.errors import RenderError, RenderTimeout
from crawler.core.schemas import FetchError, FetchErrorKind, RawDocument

if TYPE_CHECKING:
    from crawler.fetch.browser import BrowserSession

logger = logging.getLogger(__name__)

_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf,*/*;q=0.8"


class Fetcher(Protocol):
    """Anything the orchestrator can ask for one source document."""

    async def fetch(self, source: Source, url: str | None = None) -> RawDocument | FetchError: ...


class _FetchFailure(Exception):
    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.retry_after = retry_after


class TransientFetchFailure(_FetchFailure):
    """Worth retrying: timeout, connection reset, 5xx, 429."""


class TerminalFetchFailure(_FetchFailure):
    """Not worth retrying: 4xx, invalid URL, unknown host, oversized body."""


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Could not parse Retry-After header: %s", value)
        return None
    return max(0.0, retry_at.timestamp() - time.time())


def _is_dns_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for a name-resolution error."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, socket.gaierror):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def _classify_status(status: int, headers: httpx.Headers | None = None) -> None:
    """Raise the matching failure for a non-2xx status."""
    if 200 <= status < 300:
        return
    if status == 429:
        retry_after = parse_retry_after(headers.get("retry-after")) if headers else None
        raise TransientFetchFailure(
            FetchErrorKind.RATE_LIMITED, "rate limited", status=status, retry_after=retry_after,
        )
    if status >= 500:
        raise TransientFetchFailure(
            FetchErrorKind.HTTP_STATUS, f"server error {status}", status=status,
        )
    raise TerminalFetchFailure(FetchErrorKind.HTTP_STATUS, f"HTTP {status}", status=status)


class SourceFetcher:
    """Fetches source documents over HTTP (httpx) or a headless browser.

    The httpx client is created here unless one is injected; ``aclose`` only
    closes a client this instance created.
    """

    def __init__(
        self,
        config: FetchConfig,
        *,
        client: httpx.AsyncClient | None = None,
        browser: "BrowserSession | None" = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": config.user_agent, "Accept": _ACCEPT},
            timeout=httpx.Timeout(config.timeout_seconds),
        )
        self._browser = browser
        self._sleep = sleep
        self._backoff = wait_exponential(
            multiplier=config.backoff_base_seconds, max=config.backoff_max_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, source: Source, url: str | None = None) -> RawDocument | FetchError:
        """Fetch one document for source (seed URL unless url is given)."""
        target = url or source.url
        timeout = source.timeout_seconds or self._config.timeout_seconds
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception_type(TransientFetchFailure),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return await self._fetch_once(source, target, timeout)
        except TransientFetchFailure as e:
            return self._as_error(source, target, e, attempts, retryable=True)
        except TerminalFetchFailure as e:
            return self._as_error(source, target, e, attempts, retryable=False)
        # AsyncRetrying with reraise=True always returns or raises above.
        msg = "retry loop exited without a result"
        raise RuntimeError(msg)

    # --- Private helpers ---

    def _wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, TransientFetchFailure) and exc.retry_after is not None:
            return min(exc.retry_after, self._config.max_retry_after_seconds)
        return float(self._backoff(retry_state))

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "Attempt %d failed (%s) - retrying in %.1fs",
            retry_state.attempt_number, exc, delay,
        )

    def _as_error(
        self,
        source: Source,
        url: str,
        failure: _FetchFailure,
        attempts: int,
        *,
        retryable: bool,
    ) -> FetchError:
        error = FetchError(
            source_id=source.id,
            url=url,
            kind=failure.kind,
            message=failure.message,
            status=failure.status,
            attempts=attempts,
            retryable=retryable,
        )
        logger.warning("Fetch failed for '%s' (%s): %s", source.id, url, error.describe())
        return error

    async def _fetch_once(self, source: Source, url: str, timeout: float) -> RawDocument:
        if source.strategy is FetchStrategy.RENDERED_PAGE:
            return await self._render(source, url, timeout)
        return await self._get(source, url, timeout)

    async def _get(self, source: Source, url: str, timeout: float) -> RawDocument:
        try:
            async with asyncio.timeout(timeout):
                async with self._client.stream("GET", url, timeout=timeout) as response:
                    _classify_status(response.status_code, response.headers)
                    content = await self._read_limited(response)
                    return RawDocument(
                        source_id=source.id,
                        url=str(response.url),
                        status=response.status_code,
                        content=content,
                        content_type=response.headers.get("content-type", ""),
                        encoding=response.charset_encoding,
                    )
        except (TimeoutError, httpx.TimeoutException) as e:
            msg = f"timed out after {timeout}s"
            raise TransientFetchFailure(FetchErrorKind.TIMEOUT, msg) from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise TerminalFetchFailure(FetchErrorKind.INVALID_URL, str(e)) from e
        except httpx.TooManyRedirects as e:
            raise TerminalFetchFailure(FetchErrorKind.HTTP_STATUS, "too many redirects") from e
        except httpx.ConnectError as e:
            if _is_dns_failure(e):
                msg = f"host could not be resolved: {e}"
                raise TerminalFetchFailure(FetchErrorKind.UNREACHABLE_HOST, msg) from e
            raise TransientFetchFailure(
                FetchErrorKind.CONNECTION, str(e) or "connection failed",
            ) from e
        except httpx.TransportError as e:
            raise TransientFetchFailure(
                FetchErrorKind.CONNECTION, str(e) or type(e).__name__,
            ) from e
        except httpx.DecodingError as e:
            msg = f"response body could not be decoded: {e}"
            raise TerminalFetchFailure(FetchErrorKind.DECODING, msg) from e
        except httpx.HTTPError as e:
            msg = f"{type(e).__name__}: {e}"
            raise TerminalFetchFailure(FetchErrorKind.CONNECTION, msg) from e

    async def _read_limited(self, response: httpx.Response) -> bytes:
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if size > self._config.max_bytes:
                msg = f"response exceeds {self._config.max_bytes} bytes"
                raise TerminalFetchFailure(
                    FetchErrorKind.TOO_LARGE, msg, status=response.status_code,
                )
            chunks.append(chunk)
        return b"".join(chunks)

    async def _render(self, source: Source, url: str, timeout: float) -> RawDocument:
        if self._browser is None:
            raise TerminalFetchFailure(FetchErrorKind.RENDER, "no browser session available")
        try:
            page = await self._browser.render(url, timeout_s=timeout)
        except RenderTimeout as e:
            raise TransientFetchFailure(FetchErrorKind.TIMEOUT, str(e)) from e
        except RenderError as e:
            raise TransientFetchFailure(FetchErrorKind.RENDER, str(e)) from e
        _classify_status(page.status)
        return RawDocument(
            source_id=source.id,
            url=page.url,
            status=page.status,
            content=page.html.encode("utf-8"),
            content_type="text/html; charset=utf-8",
            encoding="utf-8",
        )
