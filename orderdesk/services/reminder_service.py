from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from orderdesk.logging_config import get_logger
from orderdesk.services.context_store import ContextStore, ListContext
from orderdesk.services.date_parser import ensure_timezone, local_now, local_zone
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.message_service import save_outbound
from orderdesk.services.messenger import TwilioMessenger
from orderdesk.services.response_formatter import format_pending_order_reminder, order_display_id

logger = get_logger("reminder_service")


def get_pending_orders_by_user(db: Session, now: Optional[datetime] = None) -> dict[str, list]:
    """Pending orders due on the local calendar day of `now`, grouped by user."""
    now = ensure_timezone(now, local_zone()).astimezone(local_zone()) if now else local_now()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    grouped: dict[str, list] = {}
    for order in EntityRepository(db).get_pending_orders_due_on(day_start):
        grouped.setdefault(order.user_number, []).append(order)
    return grouped


def send_pending_order_reminders(db: Session, messenger: TwilioMessenger, now: Optional[datetime] = None) -> dict:
    """
    Send each user one reminder listing today's pending orders.

    The reminder is stored as the user's list context (and on the outbound
    message) so "1 2 done" in reply updates the listed orders.
    """
    grouped = get_pending_orders_by_user(db, now)
    summary = {
        "users": len(grouped),
        "orders": sum(len(orders) for orders in grouped.values()),
        "reminders_sent": 0,
        "failed": 0,
        "errors": [],
    }
    if not grouped:
        logger.info("No pending orders due today")
        return summary

    store = ContextStore(db)
    for user_number, orders in grouped.items():
        text = format_pending_order_reminder(orders)
        context = ListContext.for_orders([order_display_id(order) for order in orders])

        result = messenger.send(user_number, text)
        if not result.ok:
            summary["failed"] += 1
            summary["errors"].append({"user_number": user_number, "error": result.error})
            logger.warning(
                "Reminder not sent",
                extra={"context": {"user_number": user_number, "error_code": result.error_code}},
            )
            continue

        if result.value:
            save_outbound(db, result.value, user_number, text, context)
        store.save_context(user_number, context)
        summary["reminders_sent"] += 1

    logger.info(
        "Order reminders processed",
        extra={"context": {key: value for key, value in summary.items() if key != "errors"}},
    )
    return summary
