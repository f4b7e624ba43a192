"""
Content fingerprints and duplicate grouping.

Map: fingerprint = SHA-256 of normalized text (None when nothing is left
after normalization). Reduce: group by fingerprint; the member with the
lowest archive ordinal is canonical, every other member is a duplicate.
"""

import hashlib
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from .normalize import normalize_for_fingerprint


def content_fingerprint(text: Optional[str]) -> Optional[str]:
    """SHA-256 of normalized text, or None if the text is empty."""
    if not text:
        return None
    normalized = normalize_for_fingerprint(text)
    if not normalized:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class FingerprintedDocument:
    document_id: str
    ordinal: int
    fingerprint: str


@dataclass
class DuplicateGroup:
    fingerprint: str
    canonical_id: str
    duplicate_ids: list[str]


def group_duplicates(documents: Iterable[FingerprintedDocument]) -> list[DuplicateGroup]:
    """Group documents sharing a fingerprint (groups of one are dropped)."""
    by_fingerprint: dict[str, list[FingerprintedDocument]] = defaultdict(list)
    for doc in documents:
        by_fingerprint[doc.fingerprint].append(doc)

    groups = []
    for fingerprint, members in by_fingerprint.items():
        if len(members) < 2:
            continue
        members.sort(key=lambda d: (d.ordinal, d.document_id))
        groups.append(
            DuplicateGroup(
                fingerprint=fingerprint,
                canonical_id=members[0].document_id,
                duplicate_ids=[d.document_id for d in members[1:]],
            )
        )
    groups.sort(key=lambda g: g.fingerprint)
    return groups
