"""Fetch-compare-replace-notify polling of a single URL."""

from __future__ import annotations

from typing import TYPE_CHECKING

from url_poller.poller.cache_slot import CacheSlot, ConfigurationError
from url_poller.poller.models import (
    CacheState,
    ChangeDecision,
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
    from url_poller.poller.scheduler import NotifyCallback, Poller

__all__ = [
    "CacheSlot",
    "CacheState",
    "ChangeDecision",
    "ConfigurationError",
    "CycleResult",
    "ErrorStatus",
    "FetchOutcome",
    "NotModified",
    "NotifyCallback",
    "PollPolicy",
    "Poller",
    "ResourceTarget",
    "Success",
    "Termination",
    "TransportFailure",
]


def __getattr__(name: str):
    if name == "Poller":
        from url_poller.poller.scheduler import Poller as _Poller

        return _Poller
    if name == "NotifyCallback":
        from url_poller.poller.scheduler import NotifyCallback as _NotifyCallback

        return _NotifyCallback
    raise AttributeError(name)
