"""Async repodata fetcher.

Responsible solely for downloading, decompressing and parsing the
``repodata.json`` of one channel subdir.  Caching and concurrency limits are
the caller's business (see ``solve_server.repositories.repodata.cache``).

Uses httpx.AsyncClient which is meant to be long-lived and reused.
A single shared client is managed by the module; see ``get_http_client``
and ``close_http_client`` for lifecycle hooks.
"""

from __future__ import annotations

import asyncio
import bz2
import json
import logging
from typing import Optional

import httpx
import zstandard
from pydantic import ValidationError
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    wait_exponential,
)

from solve_server.core.config import settings
from solve_server.models.repodata.document import RepoData, RepoDataJson

logger = logging.getLogger(__name__)

# Module-level shared client
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared AsyncClient.  Creates one if missing."""
    global _http_client  # noqa: PLW0603
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
            verify=settings.http_verify_ssl,
            headers={"User-Agent": "conda-solve-server/0.1"},
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared AsyncClient gracefully."""
    global _http_client  # noqa: PLW0603
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
        _http_client = None
        logger.info("HTTP client closed.")


class FetchError(Exception):
    """Raised when the repodata of a channel subdir cannot be collected."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(reason)


class NetworkError(FetchError):
    """The download failed (connection, timeout, non-2xx status)."""


class DecodeError(FetchError):
    """The downloaded bytes could not be decompressed."""


class ParseError(FetchError):
    """The payload is not valid JSON or not a repodata document."""


_VARIANTS = (("repodata.json.zst", "zst"), ("repodata.json.bz2", "bz2"))


async def _select_variant(subdir_url: str) -> tuple[str, Optional[str]]:
    """Pick the smallest variant the channel offers, falling back to plain JSON."""
    if settings.repodata_probe_compressed:
        client = get_http_client()
        for filename, encoding in _VARIANTS:
            candidate = f"{subdir_url}{filename}"
            try:
                response = await client.head(candidate)
            except httpx.HTTPError as exc:
                logger.debug("Probe of %s failed: %s", candidate, exc)
                continue
            if response.is_success:
                return candidate, encoding
    return f"{subdir_url}repodata.json", None


@retry(
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
    stop=lambda rs: rs.attempt_number >= settings.http_max_retries + 1,
    wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=False,
)
async def _download_with_retry(url: str) -> bytes:
    """Single download attempt; tenacity retries on transient errors."""
    return await _do_download(url)


async def _do_download(url: str) -> bytes:
    """Perform a single HTTP GET and return the raw body."""
    client = get_http_client()
    try:
        response = await client.get(url)
    except httpx.InvalidURL as exc:
        raise NetworkError(url, f"Invalid URL '{url}': {exc}") from exc
    except httpx.TimeoutException:
        raise  # propagate for retry logic
    except httpx.ConnectError:
        raise  # propagate for retry logic
    except httpx.RequestError as exc:
        raise NetworkError(url, f"Request error for '{url}': {exc}") from exc

    if not response.is_success:
        raise NetworkError(url, f"HTTP {response.status_code} for '{url}'")
    return response.content


def _decompress(raw: bytes, encoding: Optional[str], url: str) -> bytes:
    try:
        if encoding == "zst":
            decompressor = zstandard.ZstdDecompressor().decompressobj()
            data = decompressor.decompress(raw)
            if not decompressor.eof:
                raise DecodeError(url, f"Cannot decompress '{url}': truncated zstd frame")
            return data
        if encoding == "bz2":
            return bz2.decompress(raw)
    except (zstandard.ZstdError, OSError, ValueError, EOFError) as exc:
        raise DecodeError(url, f"Cannot decompress '{url}': {exc}") from exc
    return raw


def _decode_and_parse(
    raw: bytes, encoding: Optional[str], url: str, channel_url: str, platform: str
) -> RepoData:
    """CPU-bound part of a fetch; runs in a worker thread."""
    data = _decompress(raw, encoding, url)
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(url, f"Malformed JSON in '{url}': {exc}") from exc
    try:
        document = RepoDataJson.model_validate(payload)
    except ValidationError as exc:
        raise ParseError(
            url, f"'{url}' is not a repodata document ({exc.error_count()} error(s))"
        ) from exc
    return RepoData.from_json(
        document, channel=channel_url, subdir=platform, url=f"{channel_url}{platform}/"
    )


async def fetch_repodata(channel_url: str, platform: str) -> RepoData:
    """Download and parse the repodata of *platform* in the channel at *channel_url*.

    Retries on transient errors (timeouts, connection failures) using
    exponential backoff via tenacity.  Raises :class:`NetworkError`,
    :class:`DecodeError` or :class:`ParseError` on permanent failures.
    """
    url, encoding = await _select_variant(f"{channel_url}{platform}/")
    logger.info("Fetching %s", url)
    try:
        raw = await _download_with_retry(url)
    except RetryError as exc:
        raise NetworkError(
            url,
            f"Failed to fetch {url} after {settings.http_max_retries + 1} attempts: "
            f"{exc.last_attempt.exception()}",
        ) from exc

    repodata = await asyncio.to_thread(_decode_and_parse, raw, encoding, url, channel_url, platform)
    logger.info("Fetched %s (%d records)", url, len(repodata.records))
    return repodata
