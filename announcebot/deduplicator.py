"""Content-addressed deduplication.

The dedup key is a hash of the rendered HTML, not a feed-provided event id:
editing an already announced event changes its HTML and produces a fresh
announcement. That is expected behaviour.

Checking and recording are separate steps. ``is_new`` never mutates; the
dispatcher records a fingerprint after the delivery attempt.
"""

from __future__ import annotations

import hashlib
from collections.abc import Container


def fingerprint(html: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded HTML."""
    return hashlib.sha256(html.encode("utf-8")).hexdigest()


def is_new(message_fingerprint: str, sent: Container[str]) -> bool:
    """True when ``message_fingerprint`` has not been recorded in ``sent``."""
    return message_fingerprint not in sent
