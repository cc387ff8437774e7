from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

import aiohttp

from url_poller.poller.cache_slot import CacheSlot
from url_poller.poller.checksum import new_digest
from url_poller.poller.http_dates import format_http_date, parse_http_date
from url_poller.poller.models import (
    ErrorStatus,
    FetchOutcome,
    NotModified,
    ResourceTarget,
    Success,
    TransportFailure,
)

_CHUNK_BYTES = 64 * 1024


class ConditionalFetcher:
    """Fetch the target into the cache slot's candidate file with an If-Modified-Since precondition."""

    def __init__(
        self,
        *,
        target: ResourceTarget,
        timeout_seconds: float,
        slot: CacheSlot,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._target = target
        self._timeout_seconds = timeout_seconds
        self._slot = slot
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> ConditionalFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session and not self._session.closed:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
        )

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch(self, master_mtime: Optional[datetime]) -> FetchOutcome:
        """
        Issue one GET against the target and classify the response.

        Transport failures and error statuses come back as outcomes rather than
        exceptions. Filesystem errors while writing the candidate propagate.
        On anything other than Success no candidate file is left behind.
        """
        should_close = False
        if not self._session:
            await self.start()
            should_close = True

        headers = {}
        if master_mtime is not None:
            headers["If-Modified-Since"] = format_http_date(master_mtime)
            self._logger.debug("fetch.precondition if_modified_since=%s", headers["If-Modified-Since"])

        url = self._target.url
        self._logger.debug("fetch.start url=%s", url)
        try:
            assert self._session is not None
            async with self._session.get(url, headers=headers, proxy=self._target.proxy_url) as response:
                self._logger.debug("fetch.response url=%s status=%s", url, response.status)
                if response.status == 304:
                    self._slot.discard_candidate()
                    self._logger.debug("fetch.not_modified url=%s", url)
                    return NotModified()
                if 200 <= response.status < 300:
                    return await self._write_candidate(response)
                self._slot.discard_candidate()
                self._logger.error(
                    "Error fetching URL. url=%s status=%s reason=%s",
                    url,
                    response.status,
                    response.reason,
                )
                return ErrorStatus(status=response.status, reason=response.reason or "")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._slot.discard_candidate()
            self._logger.error("Error fetching URL. url=%s error=%r", url, e)
            return TransportFailure(cause=e)
        except BaseException:
            self._slot.discard_candidate()
            raise
        finally:
            if should_close:
                await self.stop()

    async def _write_candidate(self, response: aiohttp.ClientResponse) -> Success:
        candidate_path = self._slot.candidate_path
        self._logger.debug("fetch.writing_candidate path=%s", candidate_path)
        digest = new_digest()
        size_bytes = 0
        with self._slot.open_candidate() as fh:
            async for chunk in response.content.iter_chunked(_CHUNK_BYTES):
                digest.update(chunk)
                fh.write(chunk)
                size_bytes += len(chunk)

        raw_last_modified = response.headers.get("Last-Modified")
        last_modified = parse_http_date(raw_last_modified)
        if raw_last_modified and last_modified is None:
            self._logger.warning("fetch.bad_last_modified url=%s value=%r", self._target.url, raw_last_modified)
        if last_modified is not None:
            self._slot.stamp_candidate(last_modified)

        outcome = Success(
            status=response.status,
            candidate_path=candidate_path,
            digest=digest.hexdigest(),
            size_bytes=size_bytes,
            last_modified=last_modified,
        )
        self._logger.debug(
            "fetch.candidate_written digest=%s size=%d last_modified=%s",
            outcome.digest,
            size_bytes,
            raw_last_modified,
        )
        return outcome
