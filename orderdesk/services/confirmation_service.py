"""Pending yes/no and new/update questions.

Two kinds of question can be outstanding for a user (at most one at a time):
a fuzzy-matched task update waiting for "yes"/"no", and a possible duplicate
order waiting for "new"/"update".
"""

from datetime import datetime, timedelta
from typing import Optional

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.models import PendingConfirmation
from orderdesk.services.context_store import ContextStore
from orderdesk.services.date_parser import ensure_timezone, local_now, parse_date_time
from orderdesk.services.dialogue_state import (
    ConfirmationAnswer,
    ConfirmationKind,
    Outcome,
    Stage,
    classify_confirmation_reply,
)
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.response_formatter import (
    format_date,
    format_month_day,
    format_order_created,
    format_order_updated,
    format_task_updated,
)

logger = get_logger("confirmation_service")

DUPLICATE_REPROMPT = "Please reply 'new' for a new order or 'update' to modify the existing one."
ORDER_CREATION_CANCELLED = "Order creation cancelled. How else can I help you?"
UPDATE_CANCELLED = "Update cancelled. How else can I help you?"
UPDATE_EXPIRED = "The pending update has expired. Please try again."


def serialize_task_updates(updates: dict) -> dict:
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in updates.items()}


def deserialize_task_updates(payload: dict) -> dict:
    updates = dict(payload or {})
    if updates.get("due_date"):
        updates["due_date"] = datetime.fromisoformat(updates["due_date"])
    return updates


class ConfirmationService:
    def __init__(self, repo: EntityRepository, store: ContextStore):
        self.repo = repo
        self.store = store
        self.duplicate_ttl = timedelta(minutes=settings.duplicate_confirmation_ttl_minutes)
        self.task_ttl = timedelta(minutes=settings.task_confirmation_ttl_minutes)
        self.duplicate_window_seconds = settings.duplicate_window_seconds

    # Asking

    def check_duplicate_order(
        self,
        user_number: str,
        product_name: str,
        quantity: int,
        fulfillment_text: Optional[str],
        items: list,
        original_message: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Return a new/update question when a near-identical pending order exists.

        None means "go ahead and create the order", including when the question
        could not be stored.
        """
        fulfillment = parse_date_time(fulfillment_text, now or local_now())
        if fulfillment is None:
            return None

        pending, _ = self.repo.get_orders(user_number, status="pending", limit=100)
        similar = next(
            (
                order
                for order in pending
                if order.product_name.lower() == product_name.lower()
                and order.quantity == quantity
                and order.fulfillment_date is not None
                and abs((ensure_timezone(order.fulfillment_date) - fulfillment).total_seconds())
                < self.duplicate_window_seconds
            ),
            None,
        )
        if similar is None:
            return None

        try:
            self.store.save_confirmation(
                user_number,
                ConfirmationKind.DUPLICATE_ORDER,
                similar.order_id,
                {
                    "product_name": product_name,
                    "quantity": quantity,
                    "fulfillment_date": fulfillment_text,
                    "items": items,
                },
                original_message,
                self.duplicate_ttl,
            )
        except Exception as e:
            logger.error(f"Error storing duplicate confirmation, creating order anyway: {e}")
            self.repo.discard_changes()
            return None

        return (
            f"I found a similar pending order: {similar.product_name} x{similar.quantity} "
            f"for {format_date(similar.fulfillment_date)}. Is this a new order or an update to the existing one? "
            'Reply "new" for a new order or "update" to modify the existing one.'
        )

    def ask_task_update(self, user_number: str, task, updates: dict, candidates: int, original_message: str) -> str:
        self.store.save_confirmation(
            user_number,
            ConfirmationKind.TASK_UPDATE,
            task.id,
            serialize_task_updates(updates),
            original_message,
            self.task_ttl,
        )
        text = f'I found task "{task.title}" (due {format_month_day(task.due_date)}). '
        if candidates > 1:
            text += f"There are {candidates} possible matches. "
        return text + 'Do you want to update this task? Reply "yes" to confirm or "no" to cancel.'

    # Answering

    def resolve(self, user_number: str, text: str, confirmation: PendingConfirmation) -> Outcome:
        kind = ConfirmationKind(confirmation.kind)
        subject_id = confirmation.subject_id
        payload = dict(confirmation.pending_updates or {})
        original_message = confirmation.original_message
        answer = classify_confirmation_reply(text, kind)

        logger.info(
            "Resolving confirmation",
            extra={"context": {"user_number": user_number, "kind": kind.value, "answer": answer.value}},
        )
        if kind == ConfirmationKind.DUPLICATE_ORDER:
            reply = self._resolve_duplicate(user_number, answer, subject_id, payload, original_message)
        else:
            reply = self._resolve_task_update(user_number, answer, subject_id, payload)
        return Outcome(reply, Stage.CONFIRMATION)

    def _resolve_duplicate(
        self, user_number: str, answer: ConfirmationAnswer, subject_id: str, payload: dict, original_message
    ) -> str:
        if answer == ConfirmationAnswer.NEW:
            items = payload.get("items") or []
            try:
                order = self.repo.create_order(
                    user_number,
                    payload["product_name"],
                    int(payload.get("quantity") or 1),
                    parse_date_time(payload.get("fulfillment_date"), local_now()),
                    original_message,
                    items=items if len(items) > 1 else None,
                )
                self.store.delete_confirmation(user_number)
                return format_order_created(order)
            except Exception as e:
                logger.error(f"Error creating new order: {e}")
                self.repo.discard_changes()
                self.store.delete_confirmation(user_number)
                return "I'm sorry, I couldn't create that order. Please try again."

        if answer == ConfirmationAnswer.UPDATE:
            updates = {}
            if payload.get("product_name"):
                updates["product_name"] = payload["product_name"]
            if payload.get("quantity") is not None:
                updates["quantity"] = int(payload["quantity"])
            try:
                order = self.repo.update_order(subject_id, updates)
                self.store.delete_confirmation(user_number)
                return format_order_updated(order)
            except Exception as e:
                logger.error(f"Error updating order: {e}")
                self.repo.discard_changes()
                self.store.delete_confirmation(user_number)
                return "I'm sorry, I couldn't update that order. Please try again."

        if answer == ConfirmationAnswer.NO:
            self.store.delete_confirmation(user_number)
            return ORDER_CREATION_CANCELLED

        return DUPLICATE_REPROMPT

    def _resolve_task_update(self, user_number: str, answer: ConfirmationAnswer, subject_id: str, payload: dict) -> str:
        if answer == ConfirmationAnswer.YES:
            try:
                task = self.repo.update_task(int(subject_id), deserialize_task_updates(payload))
                self.store.delete_confirmation(user_number)
                return format_task_updated(task)
            except Exception as e:
                logger.error(f"Error updating task after confirmation: {e}")
                self.repo.discard_changes()
                self.store.delete_confirmation(user_number)
                return "I'm sorry, I couldn't update that task. Please try again."

        if answer == ConfirmationAnswer.NO:
            self.store.delete_confirmation(user_number)
            return UPDATE_CANCELLED

        task = self.repo.get_task(int(subject_id))
        if task is None:
            self.store.delete_confirmation(user_number)
            return UPDATE_EXPIRED
        return f'Please confirm: Do you want to update task "{task.title}"? Reply "yes" to confirm or "no" to cancel.'
