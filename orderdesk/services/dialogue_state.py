"""Vocabulary shared by the dialogue stages.

Enums for intents, entities, statuses and confirmation kinds, plus the small
keyword tests the router uses to read short replies ("yes", "next", "done").
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Intent(str, Enum):
    CREATE = "create"
    GET = "get"
    UPDATE = "update"
    UNKNOWN = "unknown"


class EntityType(str, Enum):
    TASK = "task"
    REMINDER = "reminder"
    ORDER = "order"
    PRODUCT = "product"

    @property
    def is_task_like(self) -> bool:
        return self in (EntityType.TASK, EntityType.REMINDER)

    @property
    def is_order_like(self) -> bool:
        return self in (EntityType.ORDER, EntityType.PRODUCT)


class ItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConfirmationKind(str, Enum):
    TASK_UPDATE = "task_update_confirmation"
    DUPLICATE_ORDER = "duplicate_order_decision"


class Stage(str, Enum):
    FORWARDED = "forwarded"
    REPLY = "reply"
    PAGINATION = "pagination"
    CONFIRMATION = "confirmation"
    FRESH = "fresh"


class ConfirmationAnswer(str, Enum):
    YES = "yes"
    NO = "no"
    NEW = "new"
    UPDATE = "update"
    OTHER = "other"


@dataclass
class Outcome:
    """What the router decided for one message."""

    reply: str
    stage: Stage
    # ListContext of the list rendered in `reply`, if any.
    context: Optional[Any] = None


# Checked in order; the first keyword found in the text wins.
STATUS_KEYWORDS = [
    ("done", ItemStatus.COMPLETED),
    ("complete", ItemStatus.COMPLETED),
    ("completed", ItemStatus.COMPLETED),
    ("finish", ItemStatus.COMPLETED),
    ("finished", ItemStatus.COMPLETED),
    ("processing", ItemStatus.PROCESSING),
    ("pending", ItemStatus.PENDING),
    ("cancelled", ItemStatus.CANCELLED),
    ("cancel", ItemStatus.CANCELLED),
]

VALID_STATUSES = {status.value for status in ItemStatus}

_DETAIL_WORDS = ("details", "detail", "information", "info", "tell me about")


def parse_intent(value) -> Intent:
    if isinstance(value, Intent):
        return value
    try:
        return Intent(str(value).strip().lower())
    except ValueError:
        return Intent.UNKNOWN


def parse_entity_type(value) -> Optional[EntityType]:
    if value is None or isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).strip().lower())
    except ValueError:
        return None


def normalize_status(value) -> Optional[ItemStatus]:
    """Map a free-form status value ("Done", "canceled") onto ItemStatus."""
    if value is None:
        return None
    if isinstance(value, ItemStatus):
        return value
    text = str(value).strip().lower()
    if text in VALID_STATUSES:
        return ItemStatus(text)
    if text == "canceled":
        return ItemStatus.CANCELLED
    return status_from_text(text)


def status_from_text(text: str) -> Optional[ItemStatus]:
    lowered = (text or "").lower()
    for keyword, status in STATUS_KEYWORDS:
        if re.search(rf"\b{keyword}\b", lowered):
            return status
    return None


def is_details_request(text: str) -> bool:
    lowered = (text or "").lower()
    if any(word in lowered for word in _DETAIL_WORDS):
        return True
    return "show" in lowered and ("order" in lowered or "task" in lowered)


def is_pagination_trigger(text: str) -> bool:
    body = (text or "").strip().lower()
    return body in ("next", "more") or body.startswith("next")


def is_true(value) -> bool:
    """Model output sends flags as JSON booleans or as "true"/"false" strings."""
    return value is True or (isinstance(value, str) and value.strip().lower() == "true")


def _is_yes(body: str) -> bool:
    return body in ("yes", "y", "confirm") or body.startswith("yes")


def _is_no(body: str) -> bool:
    return body in ("no", "n", "cancel") or body.startswith("no")


def classify_confirmation_reply(text: str, kind: ConfirmationKind) -> ConfirmationAnswer:
    """Read a short reply to a pending confirmation question."""
    body = (text or "").strip().lower()

    if kind == ConfirmationKind.DUPLICATE_ORDER:
        if body.startswith("new"):
            return ConfirmationAnswer.NEW
        if body.startswith("update"):
            return ConfirmationAnswer.UPDATE
        if _is_no(body):
            return ConfirmationAnswer.NO
        return ConfirmationAnswer.OTHER

    if _is_yes(body):
        return ConfirmationAnswer.YES
    if _is_no(body):
        return ConfirmationAnswer.NO
    return ConfirmationAnswer.OTHER
