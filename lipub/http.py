from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime

import httpx

from .constants import LOGGER, MAX_RETRY_WAIT_SECONDS

HTTP_LOGGER = LOGGER.getChild("http")
IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS"}


def retry_after_seconds(
    header: str | None,
    *,
    default: int | None = None,
    now: float | None = None,
) -> int | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if header is None or not header.strip():
        return default
    raw = header.strip()
    if raw.isdigit():
        return int(raw)

    try:
        retry_at = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return default
    if retry_at is None:
        return default

    current = time.time() if now is None else now
    return max(0, int(retry_at.timestamp() - current))


def _log_url(url: httpx.URL) -> str:
    # upload URLs are pre-signed; keep their query out of the logs
    return str(url.copy_with(query=None))


class RetryTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        max_wait_seconds: int = MAX_RETRY_WAIT_SECONDS,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._max_wait_seconds = max_wait_seconds
        self._sleep = sleep
        self._logger = logger or HTTP_LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0
        retryable = request.method in IDEMPOTENT_METHODS

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            try:
                response = await self._transport.handle_async_request(next_request)
            except httpx.TransportError as error:
                if not retryable or retries >= self._max_retries:
                    raise
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    type(error).__name__,
                    backoff_seconds,
                    request.method,
                    _log_url(request.url),
                )
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            if self._max_retries == 0 or not retryable:
                return response

            if response.status_code == 429 and retries < min(self._max_retries, 1):
                wait_seconds = retry_after_seconds(response.headers.get("retry-after"), default=1)
                if wait_seconds > self._max_wait_seconds:
                    return response
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    _log_url(request.url),
                )
                await response.aclose()
                await self._sleep(wait_seconds)
                retries += 1
                continue

            if 500 <= response.status_code < 600 and retries < self._max_retries:
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    backoff_seconds,
                    request.method,
                    _log_url(request.url),
                )
                await response.aclose()
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


async def log_request(request: httpx.Request) -> None:
    HTTP_LOGGER.info("LinkedIn request %s %s", request.method, _log_url(request.url))


async def log_response(response: httpx.Response) -> None:
    HTTP_LOGGER.info(
        "LinkedIn response %s %s -> %s",
        response.request.method,
        _log_url(response.request.url),
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        HTTP_LOGGER.warning("LinkedIn error body: %s", text)


@dataclass
class LinkedInClients:
    """Shared outbound clients, built once per process.

    ``read`` retries idempotent lookups; ``write`` never retries, since token
    exchanges and publish phases are not safe to repeat.
    """

    read: httpx.AsyncClient
    write: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.read.aclose()
        await self.write.aclose()


def build_clients(
    *,
    timeout: float,
    max_retries: int,
    debug: bool = False,
) -> LinkedInClients:
    event_hooks = {"request": [log_request], "response": [log_response]} if debug else {}

    read_client = httpx.AsyncClient(
        timeout=timeout,
        transport=RetryTransport(httpx.AsyncHTTPTransport(), max_retries=max_retries),
        event_hooks=event_hooks,
    )
    write_client = httpx.AsyncClient(timeout=timeout, event_hooks=event_hooks)
    return LinkedInClients(read=read_client, write=write_client)
