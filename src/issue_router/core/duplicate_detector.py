"""Duplicate detection helpers (core domain)."""

from __future__ import annotations

import hashlib
import re
from datetime import timedelta
from typing import Iterable, Optional

from issue_router.core.entities import (
    DuplicateMethod,
    DuplicatePolicy,
    DuplicateRecord,
    IssueContext,
)


def normalize_content(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def compute_fingerprint(title: str, body: str) -> str:
    """Stable content hash of normalized title and body."""
    payload = f"{normalize_content(title)}\n{normalize_content(body)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def issue_fingerprint(issue: IssueContext) -> str:
    return compute_fingerprint(issue.title, issue.body)


def within_lookback(
    records: Iterable[DuplicateRecord], issue: IssueContext, lookback_days: int
) -> list[DuplicateRecord]:
    """Records routed inside the lookback window of the issue timestamp.

    Older records are ignored, never deleted.
    """
    cutoff = issue.timestamp - timedelta(days=lookback_days)
    return [record for record in records if record.routed_at >= cutoff]


def find_duplicate(
    issue: IssueContext,
    history: Iterable[DuplicateRecord],
    policy: DuplicatePolicy,
) -> Optional[DuplicateRecord]:
    """Return the most recent history record duplicating this issue."""
    if not policy.enabled:
        return None

    check_permalink = policy.method in (DuplicateMethod.PERMALINK, DuplicateMethod.BOTH)
    check_hash = policy.method in (DuplicateMethod.CONTENT_HASH, DuplicateMethod.BOTH)

    fingerprint = issue_fingerprint(issue) if check_hash else None
    permalink = issue.effective_permalink

    candidates = within_lookback(history, issue, policy.lookback_days)
    candidates.sort(key=lambda record: record.routed_at, reverse=True)

    for record in candidates:
        if check_permalink and record.permalink and record.permalink == permalink:
            return record
        if check_hash and record.fingerprint == fingerprint:
            return record

    return None
