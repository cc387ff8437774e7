"""Poll a URL, keep an atomically updated local copy, and act on changes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from url_poller.poller.models import PollPolicy, ResourceTarget, Termination

if TYPE_CHECKING:
    from url_poller.poller.scheduler import Poller

# Library users who never configure logging get no output.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = ["PollPolicy", "Poller", "ResourceTarget", "Termination", "__version__"]


def __getattr__(name: str):
    if name == "Poller":
        from url_poller.poller.scheduler import Poller as _Poller

        return _Poller
    raise AttributeError(name)
