from __future__ import annotations

from url_poller.poller.models import CacheState, ChangeDecision, Success


def detect_change(master: CacheState, candidate: Success) -> ChangeDecision:
    """
    Compare a fetched candidate against the master file state.

    The digest is authoritative for content changes. A candidate without a
    Last-Modified header carries no timestamp, so only its digest is compared;
    otherwise a missing master timestamp or a different one counts as a change.
    """
    digest_changed = master.digest is None or master.digest != candidate.digest
    if candidate.last_modified is None:
        mtime_changed = master.mtime is None
    else:
        mtime_changed = master.mtime is None or master.mtime != candidate.last_modified
    return ChangeDecision(digest_changed=digest_changed, mtime_changed=mtime_changed)
