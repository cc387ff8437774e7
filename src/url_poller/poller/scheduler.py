from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, BinaryIO, Callable, Optional, Union

from url_poller.poller.cache_slot import CacheSlot
from url_poller.poller.checksum import probe_file
from url_poller.poller.detector import detect_change
from url_poller.poller.fetcher import ConditionalFetcher
from url_poller.poller.models import (
    CycleResult,
    ErrorStatus,
    FetchOutcome,
    NotModified,
    PollPolicy,
    ResourceTarget,
    Success,
    Termination,
    TransportFailure,
)

if TYPE_CHECKING:
    from url_poller.config.models import PollerSettings

NotifyCallback = Callable[[BinaryIO], Union[bool, Awaitable[bool]]]


class Poller:
    """
    Poll one URL into one cache slot, and call back whenever its content changes.

    Each cycle probes the master file, fetches the URL with an If-Modified-Since
    precondition, promotes the candidate when the digest or Last-Modified time
    differs, and notifies the callback with the master file opened for reading.
    The callback's return value decides whether polling continues.

    Error statuses and transport failures never end the loop; they switch the
    next sleep from ``policy.interval`` to ``policy.backoff``. Only the
    callback, ``request_stop()``, or a fatal setup or filesystem error ends it.
    """

    def __init__(
        self,
        *,
        target: ResourceTarget,
        policy: Optional[PollPolicy] = None,
        cache_dir: Optional[str] = None,
        master_file: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        instance_id: Optional[str] = None,
    ) -> None:
        self._target = target
        self._policy = policy or PollPolicy()
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._slot = CacheSlot(cache_dir=cache_dir, master_file=master_file, instance_id=instance_id)
        self._fetcher = ConditionalFetcher(
            target=target,
            timeout_seconds=self._policy.timeout,
            slot=self._slot,
            logger=self._logger,
        )
        self._stop_event = asyncio.Event()
        self._logger.debug(
            "poller.init url=%s interval=%s timeout=%s backoff=%s mtime_updates=%s proxy=%s",
            target.url,
            self._policy.interval,
            self._policy.timeout,
            self._policy.backoff,
            self._policy.mtime_updates,
            target.proxy_url,
        )

    @classmethod
    def from_settings(cls, settings: PollerSettings, *, logger: Optional[logging.Logger] = None) -> Poller:
        return cls(
            target=settings.target,
            policy=settings.policy,
            cache_dir=settings.cache.cache_dir,
            master_file=settings.cache.master_file,
            logger=logger,
        )

    @property
    def policy(self) -> PollPolicy:
        return self._policy

    @property
    def master_path(self) -> Path:
        return self._slot.master_path

    @property
    def cache_dir(self) -> Path:
        return self._slot.cache_dir

    @property
    def candidate_path(self) -> Path:
        return self._slot.candidate_path

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Ask the loop to stop; an in-flight fetch is abandoned and a pending sleep ends early."""
        self._stop_event.set()

    async def __aenter__(self) -> Poller:
        self._slot.open()
        try:
            await self._fetcher.start()
        except BaseException:
            self._slot.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            await self._fetcher.stop()
        finally:
            self._slot.close()

    async def run(self, callback: NotifyCallback) -> Termination:
        """Poll until the callback returns a falsy value or a stop is requested."""
        async with self:
            while True:
                result = await self.run_cycle(callback)
                if result is None:
                    self._logger.info("Polling cancelled during fetch. url=%s", self._target.url)
                    return Termination.CANCELLED
                if not result.should_continue:
                    self._logger.debug("poller.callback_stopped url=%s", self._target.url)
                    return Termination.CALLBACK_STOPPED

                self._logger.debug("poller.sleep seconds=%s", result.sleep_seconds)
                if await self._wait_for_stop(result.sleep_seconds):
                    self._logger.info("Polling cancelled. url=%s", self._target.url)
                    return Termination.CANCELLED

    async def run_cycle(self, callback: NotifyCallback) -> Optional[CycleResult]:
        """
        Run one fetch-compare-replace-notify cycle.

        Returns None when a stop request abandoned the fetch. Must be called
        while the poller is entered as an async context manager.
        """
        master = probe_file(self._slot.master_path)
        self._logger.debug("poller.master digest=%s mtime=%s", master.digest, master.mtime)

        outcome = await self._fetch_or_stop(master.mtime)
        if outcome is None:
            return None

        if isinstance(outcome, (ErrorStatus, TransportFailure)):
            return self._result(outcome, sleep_seconds=self._policy.backoff)
        if isinstance(outcome, NotModified):
            self._logger.debug("poller.up_to_date url=%s", self._target.url)
            return self._result(outcome)

        assert isinstance(outcome, Success)
        decision = detect_change(master, outcome)
        if not decision.should_promote:
            self._logger.debug("poller.skip_update reason=candidate_matches_master")
            self._slot.discard_candidate()
            return self._result(outcome)

        self._slot.promote()
        self._logger.info(
            "%s from URL. url=%s digest=%s",
            decision.change_type.capitalize(),
            self._target.url,
            outcome.digest,
        )

        if not decision.should_notify(mtime_updates=self._policy.mtime_updates):
            return self._result(outcome, promoted=True)

        should_continue = await self._notify(callback)
        return self._result(outcome, promoted=True, notified=True, should_continue=should_continue)

    async def _fetch_or_stop(self, master_mtime: Optional[datetime]) -> Optional[FetchOutcome]:
        fetch_task = asyncio.create_task(self._fetcher.fetch(master_mtime))
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({fetch_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            fetch_task.cancel()
            stop_task.cancel()
            raise

        if fetch_task in done:
            stop_task.cancel()
            return fetch_task.result()

        fetch_task.cancel()
        try:
            await fetch_task
        except asyncio.CancelledError:
            pass
        self._slot.discard_candidate()
        return None

    async def _notify(self, callback: NotifyCallback) -> bool:
        with self._slot.open_master() as fh:
            result = callback(fh)
            if inspect.isawaitable(result):
                result = await result
        return bool(result)

    async def _wait_for_stop(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    def _result(
        self,
        outcome: FetchOutcome,
        *,
        sleep_seconds: Optional[float] = None,
        promoted: bool = False,
        notified: bool = False,
        should_continue: bool = True,
    ) -> CycleResult:
        return CycleResult(
            outcome=outcome,
            promoted=promoted,
            notified=notified,
            should_continue=should_continue,
            sleep_seconds=self._policy.interval if sleep_seconds is None else sleep_seconds,
        )
