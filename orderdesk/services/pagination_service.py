from datetime import timedelta
from typing import Optional

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.services.context_store import ContextStore, ListContext
from orderdesk.services.dialogue_state import Outcome, Stage
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.response_formatter import format_order_list, format_task_list

logger = get_logger("pagination_service")

NO_CURSOR_MESSAGE = "No more items to show. Please request your tasks or orders again."
UNKNOWN_CURSOR_MESSAGE = "No pagination state found. Please request your tasks or orders again."


def _filters(status: Optional[str], date_range: Optional[str]) -> dict:
    return {key: value for key, value in (("status", status), ("date_range", date_range)) if value}


class PaginationService:
    """Renders task/order pages and keeps the cursor and list context in step."""

    def __init__(self, repo: EntityRepository, store: ContextStore):
        self.repo = repo
        self.store = store
        self.page_size = settings.page_size
        self.cursor_ttl = timedelta(minutes=settings.cursor_ttl_minutes)

    def _fetch(self, user_number: str, entity_type: str, filters: dict, offset: int):
        fetch = self.repo.get_tasks if entity_type == "task" else self.repo.get_orders
        return fetch(
            user_number,
            status=filters.get("status"),
            date_range=filters.get("date_range"),
            offset=offset,
            limit=self.page_size,
        )

    def _render(self, entity_type: str, items, total: int, offset: int, filters: dict) -> tuple[str, ListContext]:
        if entity_type == "task":
            text = format_task_list(items, total, offset)
            return text, ListContext.for_tasks([task.id for task in items], offset)
        text = format_order_list(items, total, offset, filters.get("status"), filters.get("date_range"))
        return text, ListContext.for_orders([order.order_id or str(order.id) for order in items], offset)

    def first_page(
        self,
        user_number: str,
        entity_type: str,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
    ) -> Outcome:
        """Show the first page and open (or clear) the cursor."""
        filters = _filters(status, date_range)
        items, total = self._fetch(user_number, entity_type, filters, 0)

        if total > len(items):
            self.store.save_cursor(user_number, entity_type, 0, total, filters, self.cursor_ttl)
        else:
            self.store.delete_cursor(user_number, entity_type)

        text, context = self._render(entity_type, items, total, 0, filters)
        self.store.save_context(user_number, context)
        return Outcome(text, Stage.FRESH, context)

    def next_page(self, user_number: str) -> Outcome:
        cursor = self.store.load_cursor(user_number)
        if cursor is None:
            return Outcome(NO_CURSOR_MESSAGE, Stage.PAGINATION)

        entity_type = cursor.entity_type
        filters = dict(cursor.filters or {})
        new_offset = (cursor.offset or 0) + self.page_size

        if entity_type not in ("task", "order"):
            self.store.delete_cursor(user_number, entity_type)
            return Outcome(UNKNOWN_CURSOR_MESSAGE, Stage.PAGINATION)

        try:
            items, total = self._fetch(user_number, entity_type, filters, new_offset)
            if not items:
                self.store.delete_cursor(user_number, entity_type)
                return Outcome(f"No more {entity_type}s to show.", Stage.PAGINATION)

            text, context = self._render(entity_type, items, total, new_offset, filters)
            self.store.save_context(user_number, context)

            if total > new_offset + len(items):
                self.store.save_cursor(user_number, entity_type, new_offset, total, filters, self.cursor_ttl)
            else:
                self.store.delete_cursor(user_number, entity_type)
        except Exception as e:
            logger.error(f"Error getting next {entity_type}s: {e}")
            self.repo.discard_changes()
            return Outcome(f"I'm sorry, I couldn't retrieve the next {entity_type}s. Please try again.", Stage.PAGINATION)

        logger.info(
            "Pagination advanced",
            extra={"context": {"user_number": user_number, "entity_type": entity_type, "offset": new_offset}},
        )
        return Outcome(text, Stage.PAGINATION, context)
