"""Per-user dialogue state: last shown list, pending confirmation, pagination cursor."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from orderdesk.logging_config import get_logger
from orderdesk.models import ConversationContext, PaginationState, PendingConfirmation
from orderdesk.services.date_parser import ensure_timezone
from orderdesk.services.dialogue_state import ConfirmationKind

logger = get_logger("context_store")


@dataclass
class ListContext:
    """Snapshot of a rendered list, keyed by the absolute numbers the user saw."""

    entity_type: Optional[str] = None
    order_ids: list = field(default_factory=list)
    task_ids: list = field(default_factory=list)
    order_mappings: dict = field(default_factory=dict)
    task_mappings: dict = field(default_factory=dict)

    @classmethod
    def for_orders(cls, order_ids: Sequence[str], offset: int = 0) -> "ListContext":
        ids = [str(order_id) for order_id in order_ids]
        return cls(
            entity_type="order",
            order_ids=ids,
            order_mappings={str(offset + index + 1): order_id for index, order_id in enumerate(ids)},
        )

    @classmethod
    def for_tasks(cls, task_ids: Sequence[int], offset: int = 0) -> "ListContext":
        ids = [int(task_id) for task_id in task_ids]
        return cls(
            entity_type="task",
            task_ids=ids,
            task_mappings={str(offset + index + 1): task_id for index, task_id in enumerate(ids)},
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["ListContext"]:
        if not data or not isinstance(data, dict):
            return None
        return cls(
            entity_type=data.get("entity_type"),
            order_ids=list(data.get("order_ids") or []),
            task_ids=list(data.get("task_ids") or []),
            order_mappings=dict(data.get("order_mappings") or {}),
            task_mappings=dict(data.get("task_mappings") or {}),
        )

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "order_ids": list(self.order_ids),
            "task_ids": list(self.task_ids),
            "order_mappings": dict(self.order_mappings),
            "task_mappings": dict(self.task_mappings),
        }

    @property
    def ids(self) -> list:
        return self.task_ids if self.entity_type == "task" else self.order_ids

    @property
    def mappings(self) -> dict:
        return self.task_mappings if self.entity_type == "task" else self.order_mappings

    @property
    def max_position(self) -> int:
        """Highest number the user can refer to (positions are absolute across pages)."""
        numeric = [int(key) for key in self.mappings if str(key).isdigit()]
        return max(numeric + [len(self.ids)])

    def id_at(self, position: int):
        """Map a displayed number to an id, falling back to the list index."""
        mapped = self.mappings.get(str(position))
        if mapped is not None:
            return mapped
        if 1 <= position <= len(self.ids):
            return self.ids[position - 1]
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_live(expires_at: Optional[datetime], now: datetime) -> bool:
    return expires_at is not None and ensure_timezone(expires_at) > now


class ContextStore:
    def __init__(self, db: Session):
        self.db = db

    # List context

    def load_context(self, user_number: str) -> Optional[ListContext]:
        row = self.db.query(ConversationContext).filter(ConversationContext.user_number == user_number).first()
        if row is None or not row.entity_type:
            return None
        return ListContext(
            entity_type=row.entity_type,
            order_ids=list(row.order_ids or []),
            task_ids=list(row.task_ids or []),
            order_mappings=dict(row.order_mappings or {}),
            task_mappings=dict(row.task_mappings or {}),
        )

    def save_context(self, user_number: str, context: ListContext) -> None:
        row = self.db.query(ConversationContext).filter(ConversationContext.user_number == user_number).first()
        if row is None:
            row = ConversationContext(user_number=user_number)
            self.db.add(row)
        row.entity_type = context.entity_type
        row.order_ids = list(context.order_ids)
        row.task_ids = list(context.task_ids)
        row.order_mappings = dict(context.order_mappings)
        row.task_mappings = dict(context.task_mappings)
        self.db.flush()

    # Pending confirmation

    def load_confirmation(self, user_number: str, now: Optional[datetime] = None) -> Optional[PendingConfirmation]:
        """Live confirmation for the user; expired rows read as absent."""
        now = now or _utcnow()
        row = self.db.query(PendingConfirmation).filter(PendingConfirmation.user_number == user_number).first()
        if row is None or not _is_live(row.expires_at, now):
            return None
        return row

    def save_confirmation(
        self,
        user_number: str,
        kind: ConfirmationKind,
        subject_id,
        pending_updates: dict,
        original_message: Optional[str],
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> PendingConfirmation:
        now = now or _utcnow()
        row = self.db.query(PendingConfirmation).filter(PendingConfirmation.user_number == user_number).first()
        if row is None:
            row = PendingConfirmation(user_number=user_number)
            self.db.add(row)
        row.kind = ConfirmationKind(kind).value
        row.subject_id = str(subject_id)
        row.pending_updates = dict(pending_updates)
        row.original_message = original_message
        row.created_at = now
        row.expires_at = now + ttl
        self.db.flush()
        logger.info(
            "Confirmation stored",
            extra={"context": {"user_number": user_number, "kind": row.kind, "subject_id": row.subject_id}},
        )
        return row

    def delete_confirmation(self, user_number: str) -> None:
        self.db.query(PendingConfirmation).filter(PendingConfirmation.user_number == user_number).delete()
        self.db.flush()

    # Pagination cursor

    def load_cursor(self, user_number: str, now: Optional[datetime] = None) -> Optional[PaginationState]:
        """Most recently created live cursor for the user, whatever its entity type."""
        now = now or _utcnow()
        rows = (
            self.db.query(PaginationState)
            .filter(PaginationState.user_number == user_number)
            .order_by(PaginationState.created_at.desc(), PaginationState.id.desc())
            .all()
        )
        return next((row for row in rows if _is_live(row.expires_at, now)), None)

    def save_cursor(
        self,
        user_number: str,
        entity_type: str,
        offset: int,
        total_count: int,
        filters: dict,
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> PaginationState:
        now = now or _utcnow()
        row = (
            self.db.query(PaginationState)
            .filter(PaginationState.user_number == user_number, PaginationState.entity_type == entity_type)
            .first()
        )
        if row is None:
            row = PaginationState(user_number=user_number, entity_type=entity_type, created_at=now)
            self.db.add(row)
        elif offset == 0:
            row.created_at = now
        row.offset = offset
        row.total_count = total_count
        row.filters = dict(filters)
        row.expires_at = now + ttl
        self.db.flush()
        return row

    def delete_cursor(self, user_number: str, entity_type: Optional[str] = None) -> None:
        query = self.db.query(PaginationState).filter(PaginationState.user_number == user_number)
        if entity_type:
            query = query.filter(PaginationState.entity_type == entity_type)
        query.delete()
        self.db.flush()
