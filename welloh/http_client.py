"""HTTP helpers with semaphore control and retry logic."""

import asyncio
import logging
import random
from typing import AsyncIterator, Optional

import httpx

from .errors import LookupFailure, RateLimited

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("RESOURCE_EXHAUSTED", "rate_limit_exceeded", "insufficient_quota")


def _backoff(attempt: int, factor: float) -> float:
    return factor * (2 ** attempt) + random.uniform(0, 0.2)


def is_quota_error(response: httpx.Response) -> bool:
    """True for HTTP 429 or a provider body reporting exhausted quota."""
    if response.status_code == 429:
        return True
    if response.status_code < 400:
        return False
    try:
        body = response.text
    except httpx.ResponseNotRead:
        return False
    return any(marker in body for marker in QUOTA_MARKERS)


def _raise_for_failure(response: httpx.Response, url: str) -> None:
    if is_quota_error(response):
        logger.warning("Upstream quota exhausted (%d): %s", response.status_code, url)
        raise RateLimited("The analysis service is busy. Please wait a moment and try again.")
    logger.error("HTTP %d from %s", response.status_code, url)
    raise LookupFailure(f"Market service returned HTTP {response.status_code}.")


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    json: dict,
    headers: Optional[dict] = None,
    semaphore: Optional[asyncio.Semaphore] = None,
    timeout: float = 30,
    retries: int = 3,
    backoff_factor: float = 0.5,
) -> dict:
    """
    POST a JSON body and decode the JSON reply, with exponential backoff retry.

    Server errors (5xx), timeouts and connection errors are retried. Quota
    errors are not: they surface immediately as ``RateLimited``.

    Raises:
        RateLimited: HTTP 429 or RESOURCE_EXHAUSTED style body
        LookupFailure: any other persistent failure
    """
    semaphore = semaphore or asyncio.Semaphore(1)
    last_exception: Optional[Exception] = None

    async with semaphore:
        for attempt in range(retries):
            try:
                logger.debug("HTTP POST attempt %d/%d: %s", attempt + 1, retries, url)
                response = await client.post(url, json=json, headers=headers, timeout=timeout)

                if response.status_code >= 500 and not is_quota_error(response):
                    if attempt < retries - 1:
                        backoff = _backoff(attempt, backoff_factor)
                        logger.warning(
                            "Server error (%d). Retrying in %.2f seconds...",
                            response.status_code,
                            backoff,
                        )
                        await asyncio.sleep(backoff)
                        continue

                if response.status_code >= 400:
                    _raise_for_failure(response, url)

                logger.debug("HTTP POST success: %s", url)
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exception = exc
                if attempt < retries - 1:
                    backoff = _backoff(attempt, backoff_factor)
                    logger.warning(
                        "HTTP POST error on attempt %d: %s. Retrying in %.2f seconds...",
                        attempt + 1,
                        exc,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                else:
                    logger.error("HTTP POST failed after %d retries: %s", retries, exc)

            except ValueError as exc:
                logger.error("Invalid JSON from %s: %s", url, exc)
                raise LookupFailure("Market service returned an unreadable response.") from exc

            except httpx.HTTPError as exc:
                logger.error("HTTP POST error: %s", exc)
                raise LookupFailure("Could not reach the market service.") from exc

    raise LookupFailure("Could not reach the market service.") from last_exception


async def stream_lines(
    client: httpx.AsyncClient,
    url: str,
    json: dict,
    headers: Optional[dict] = None,
    semaphore: Optional[asyncio.Semaphore] = None,
    timeout: float = 30,
) -> AsyncIterator[str]:
    """
    POST and yield response lines as they arrive (server-sent events).

    No retry: a stream that has started cannot be replayed transparently.
    """
    semaphore = semaphore or asyncio.Semaphore(1)
    async with semaphore:
        try:
            async with client.stream("POST", url, json=json, headers=headers, timeout=timeout) as response:
                if response.status_code >= 400:
                    await response.aread()
                    _raise_for_failure(response, url)
                async for line in response.aiter_lines():
                    if line:
                        yield line
        except httpx.HTTPError as exc:
            logger.error("HTTP stream error: %s", exc)
            raise LookupFailure("The stream was interrupted. Please try again.") from exc
