"""Category state reader and label-write policy.

Objective:
    Classify a message's existing Outlook categories into triage states
    without calling the network or the LLM, and compute the category list to
    write back when a new triage label is applied.

High-level call tree:
    - :func:`has_priority_category`
    - :func:`has_replied_category`
    - :func:`get_follow_up_category`
    - :func:`build_category_update`
        - :func:`is_triage_category`

All matching is case-insensitive substring matching, so labels a user renamed
with different casing (or colour-prefixed variants) are still recognised.
"""

from typing import Iterable, Optional

from .models import FollowUpBucket

PRIORITY_MARKERS = ("ai.priority", "ai priority")
REPLIED_MARKER = "replied"

# Order matters: first match wins.
FOLLOW_UP_MARKERS = (
    ("ai followup high", FollowUpBucket.HIGH),
    ("ai followup normal", FollowUpBucket.NORMAL),
    ("ai followup low", FollowUpBucket.LOW),
    ("0 - nudge", FollowUpBucket.NUDGE),
    ("ai followup nudge", FollowUpBucket.NUDGE),
    ("ai followup no response required", FollowUpBucket.NO_RESPONSE),
)

WRITE_MODES = ("replace", "merge")


def _lowered(categories: Optional[Iterable[str]]) -> list[str]:
    return [c.lower() for c in (categories or []) if isinstance(c, str)]


def has_priority_category(categories: Optional[Iterable[str]]) -> bool:
    """Return True if any label is an AI priority label."""
    return any(
        marker in label for label in _lowered(categories) for marker in PRIORITY_MARKERS
    )


def has_replied_category(categories: Optional[Iterable[str]]) -> bool:
    """Return True if any label carries the replied marker."""
    return any(REPLIED_MARKER in label for label in _lowered(categories))


def get_follow_up_category(
    categories: Optional[Iterable[str]],
) -> Optional[FollowUpBucket]:
    """Map existing labels to the follow-up bucket they represent.

    Args:
        categories: Category list from the message.

    Returns:
        Optional[FollowUpBucket]: The bucket, or None when no follow-up label
        is present.
    """
    lowered = _lowered(categories)
    for marker, bucket in FOLLOW_UP_MARKERS:
        if any(marker in label for label in lowered):
            return bucket
    return None


def is_triage_category(label: str) -> bool:
    """Whether a label belongs to one of the triage axes."""
    return (
        has_priority_category([label])
        or has_replied_category([label])
        or get_follow_up_category([label]) is not None
    )


def build_category_update(
    existing: Optional[Iterable[str]],
    new_label: str,
    mode: str = "replace",
) -> list[str]:
    """Compute the full category list to PATCH onto a message.

    Modes:
        - ``replace``: the list becomes ``[new_label]``. Any label a user
          added by hand is discarded.
        - ``merge``: labels from the triage axes are removed, every other
          label is kept in its original order and ``new_label`` is appended.

    Args:
        existing: Categories currently on the message.
        new_label: Triage label to apply.
        mode: ``replace`` or ``merge``.

    Returns:
        list[str]: New category list.

    Raises:
        ValueError: If ``mode`` is not a known write mode.
    """
    if mode == "replace":
        return [new_label]
    if mode == "merge":
        kept = [c for c in (existing or []) if not is_triage_category(c) and c != new_label]
        return kept + [new_label]
    raise ValueError(f"Unknown category write mode: {mode!r} (expected one of {WRITE_MODES})")
