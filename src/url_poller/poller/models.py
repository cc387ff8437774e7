from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PROXY_PORT = 3128


class ResourceTarget(BaseModel):
    """The remote resource being mirrored, plus the optional HTTP proxy used to reach it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    proxy_host: Optional[str] = None
    proxy_port: int = Field(default=DEFAULT_PROXY_PORT, gt=0, lt=65536)

    @field_validator("url")
    @classmethod
    def _require_absolute_http_url(cls, value: str) -> str:
        parts = urlsplit(value.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"url must be an absolute http(s) URL: {value}")
        return value.strip()

    @property
    def proxy_url(self) -> Optional[str]:
        if not self.proxy_host:
            return None
        return f"http://{self.proxy_host}:{self.proxy_port}"


class PollPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Seconds between successful cycles
    interval: float = Field(default=1.0, gt=0)
    # Per-fetch deadline
    timeout: float = Field(default=15.0, gt=0)
    # Sleep after an error status or a transport failure
    backoff: float = Field(default=30.0, gt=0)
    # Notify when only Last-Modified changed but the body did not
    mtime_updates: bool = False


@dataclass(frozen=True, slots=True)
class CacheState:
    """Digest and modification time of the master file; both None when it does not exist."""

    digest: Optional[str]
    mtime: Optional[datetime]

    @property
    def exists(self) -> bool:
        return self.digest is not None


@dataclass(frozen=True, slots=True)
class NotModified:
    status: int = 304


@dataclass(frozen=True, slots=True)
class Success:
    status: int
    candidate_path: Path
    digest: str
    size_bytes: int
    last_modified: Optional[datetime]


@dataclass(frozen=True, slots=True)
class ErrorStatus:
    status: int
    reason: str = ""


@dataclass(frozen=True, slots=True)
class TransportFailure:
    cause: BaseException


FetchOutcome = Union[NotModified, Success, ErrorStatus, TransportFailure]


@dataclass(frozen=True, slots=True)
class ChangeDecision:
    digest_changed: bool
    mtime_changed: bool

    @property
    def should_promote(self) -> bool:
        return self.digest_changed or self.mtime_changed

    def should_notify(self, *, mtime_updates: bool) -> bool:
        if self.digest_changed:
            return True
        return self.mtime_changed and mtime_updates

    @property
    def change_type(self) -> str:
        return "fetched new content" if self.digest_changed else "updated mtime"


@dataclass(frozen=True, slots=True)
class CycleResult:
    """What a single fetch-compare-replace-notify cycle did, and what comes next."""

    outcome: FetchOutcome
    promoted: bool
    notified: bool
    should_continue: bool
    sleep_seconds: float


class Termination(str, enum.Enum):
    CALLBACK_STOPPED = "callback_stopped"
    CANCELLED = "cancelled"
