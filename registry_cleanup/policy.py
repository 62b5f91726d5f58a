"""Retention rules deciding which tags of a repository go away.

The policy is pure: it sees tags that already passed name filtering and
carry a creation time, and never touches the network.
"""

import re
from collections.abc import Iterable
from datetime import datetime, timedelta

from registry_cleanup.models import TagCandidate
from registry_cleanup.utils import true_utcnow

PROTECTED_TAG = "latest"


def filtered_tags(names: Iterable[str], pattern: re.Pattern) -> list[str]:
    """Keep names matching `pattern`, never `latest`, in discovery order."""
    return [
        name for name in names if name != PROTECTED_TAG and pattern.search(name)
    ]


def sort_by_recency(tags: Iterable[TagCandidate]) -> list[TagCandidate]:
    """Newest first. `sorted` is stable, so equal timestamps keep discovery order."""
    return sorted(tags, key=lambda tag: tag.created_at, reverse=True)  # type: ignore


def deletion_threshold(max_age: timedelta, now: datetime | None = None) -> datetime:
    return (now or true_utcnow()) - max_age


def select_for_deletion(
    tags: list[TagCandidate], min_keep: int, threshold: datetime
) -> list[TagCandidate]:
    """Return the tags to delete, oldest first.

    `tags` must be ordered newest first. The `min_keep` newest tags are
    always kept; every older tag created before `threshold` is selected.
    """
    if min_keep <= 0:
        raise ValueError("min_keep must be greater than 0")

    to_delete: list[TagCandidate] = []
    for index in range(len(tags) - 1, min_keep - 1, -1):
        tag = tags[index]
        if tag.created_at is not None and tag.created_at < threshold:
            to_delete.append(tag)
    return to_delete
