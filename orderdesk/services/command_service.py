"""Fresh commands: create, get and update for tasks and orders."""

from orderdesk.logging_config import get_logger
from orderdesk.schemas.analysis import Analysis
from orderdesk.services.confirmation_service import ConfirmationService
from orderdesk.services.context_store import ContextStore
from orderdesk.services.date_parser import local_now, parse_date_time
from orderdesk.services.dialogue_state import (
    Intent,
    Outcome,
    Stage,
    VALID_STATUSES,
    is_true,
    normalize_status,
)
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.intent_classifier import IntentClassifier
from orderdesk.services.pagination_service import PaginationService
from orderdesk.services.reference_resolver import resolve_single
from orderdesk.services.reply_service import ASK_ORDER_FIELDS
from orderdesk.services.response_formatter import (
    HELP_MESSAGE,
    format_bulk_update,
    format_order_created,
    format_order_details,
    format_order_summary,
    format_order_updated,
    format_task_created,
    format_task_updated,
)

logger = get_logger("command_service")

GUIDANCE = {
    Intent.CREATE: "I can help you create tasks or orders. What would you like to create?",
    Intent.GET: "I can show you your tasks or orders. What would you like to see?",
    Intent.UPDATE: "I can help you update tasks or orders. What would you like to update?",
}

NO_MATCHING_TASK = (
    "I couldn't find a matching task. Please be more specific "
    "(e.g., 'update task 1' or 'change my appointment on 15th')."
)

SUMMARY_LIMIT = 1000
FUZZY_TASK_LIMIT = 1000


def _to_int(value, default: int = 1) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_items(analysis: Analysis) -> tuple[str, int, list]:
    """Product name, total quantity and item rows for an order request.

    Several items collapse into "A x2, B x1" with the quantities summed.
    """
    raw_items = analysis.parameters.get("items")
    items = []
    if isinstance(raw_items, list):
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            name = raw.get("productName") or raw.get("product_name") or "Unknown"
            items.append({"product_name": str(name), "quantity": _to_int(raw.get("quantity"))})

    if items:
        product_name = ", ".join(f"{item['product_name']} x{item['quantity']}" for item in items)
        return product_name, sum(item["quantity"] for item in items), items

    product_name = analysis.param("productName") or "Unknown Product"
    return str(product_name), _to_int(analysis.parameters.get("quantity")), []


class CommandService:
    def __init__(
        self,
        repo: EntityRepository,
        store: ContextStore,
        classifier: IntentClassifier,
        pagination: PaginationService,
        confirmations: ConfirmationService,
    ):
        self.repo = repo
        self.store = store
        self.classifier = classifier
        self.pagination = pagination
        self.confirmations = confirmations

    def execute(self, user_number: str, analysis: Analysis, text: str) -> Outcome:
        entity = analysis.entity_type
        if analysis.intent == Intent.UNKNOWN:
            return Outcome(HELP_MESSAGE, Stage.FRESH)
        if entity is None:
            return Outcome(GUIDANCE[analysis.intent], Stage.FRESH)

        if analysis.intent == Intent.CREATE:
            if entity.is_task_like:
                return self.create_task(user_number, analysis, text)
            return self.create_order(user_number, analysis, text)

        if analysis.intent == Intent.GET:
            if entity.is_task_like:
                return self.get_tasks(user_number, analysis)
            return self.get_orders(user_number, analysis, text)

        if entity.is_task_like:
            return self.update_task(user_number, analysis, text)
        return self.update_order(user_number, analysis)

    # Create

    def create_task(self, user_number: str, analysis: Analysis, text: str) -> Outcome:
        due_text = analysis.param("dueDate")
        try:
            task = self.repo.create_task(
                user_number,
                analysis.param("title") or "Untitled Task",
                analysis.param("description"),
                parse_date_time(due_text, local_now()) if due_text else None,
                text,
            )
        except Exception as e:
            logger.error(f"Error creating task: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't create that task. Please try again.", Stage.FRESH)
        return Outcome(format_task_created(task), Stage.FRESH)

    def create_order(self, user_number: str, analysis: Analysis, text: str, stage: Stage = Stage.FRESH) -> Outcome:
        """Create an order, asking first when it looks like a duplicate."""
        product_name, quantity, items = normalize_items(analysis)
        fulfillment_text = analysis.param("fulfillmentDate")
        try:
            if fulfillment_text:
                question = self.confirmations.check_duplicate_order(
                    user_number, product_name, quantity, fulfillment_text, items, text
                )
                if question is not None:
                    return Outcome(question, stage)

            order = self.repo.create_order(
                user_number,
                product_name,
                quantity,
                parse_date_time(fulfillment_text, local_now()) if fulfillment_text else None,
                text,
                items=items if len(items) > 1 else None,
            )
        except Exception as e:
            logger.error(f"Error creating order: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't create that order. Please try again.", stage)
        return Outcome(format_order_created(order), stage)

    # Get

    def get_tasks(self, user_number: str, analysis: Analysis) -> Outcome:
        status = normalize_status(analysis.param("status"))
        try:
            return self.pagination.first_page(
                user_number,
                "task",
                status=status.value if status else None,
                date_range=analysis.param("dateRange"),
            )
        except Exception as e:
            logger.error(f"Error getting tasks: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't retrieve your tasks. Please try again.", Stage.FRESH)

    def _order_from_reference(self, user_number: str, reference: str):
        """Look up an order by id, or by a list number from the last shown list."""
        order = self.repo.get_order_by_order_id(reference, user_number)
        if order is not None or not reference.isdigit():
            return order
        context = self.store.load_context(user_number)
        if context is None or context.entity_type != "order":
            return None
        order_id = context.id_at(int(reference))
        return self.repo.get_order_by_order_id(order_id, user_number) if order_id else None

    def get_orders(self, user_number: str, analysis: Analysis, text: str) -> Outcome:
        try:
            reference = analysis.param("orderId")
            if reference is not None:
                reference = str(reference).strip().lstrip("#")
                order = self._order_from_reference(user_number, reference)
                if order is None:
                    return Outcome(
                        f"I couldn't find order {reference}. Please check the order ID and try again.", Stage.FRESH
                    )
                return Outcome(format_order_details(order), Stage.FRESH)

            context = self.store.load_context(user_number)
            if context is not None and context.entity_type == "order" and context.ids:
                position = resolve_single(text, context.max_position)
                if position is not None:
                    order_id = context.id_at(position)
                    order = self.repo.get_order_by_order_id(order_id, user_number) if order_id else None
                    if order is None:
                        return Outcome(
                            f"I couldn't find order {position}. Please specify the order ID "
                            '(e.g., "ORD-123") or say "show my orders" first.',
                            Stage.FRESH,
                        )
                    return Outcome(format_order_details(order), Stage.FRESH)

            status = (analysis.param("status") or "").lower() or None
            if status not in VALID_STATUSES:
                status = None
            date_range = analysis.param("dateRange")

            if is_true(analysis.parameters.get("summary")):
                orders, _ = self.repo.get_orders(
                    user_number, status=status, date_range=date_range, limit=SUMMARY_LIMIT
                )
                return Outcome(format_order_summary(orders, date_range or "all time"), Stage.FRESH)

            return self.pagination.first_page(user_number, "order", status=status, date_range=date_range)
        except Exception as e:
            logger.error(f"Error getting orders: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't retrieve your orders. Please try again.", Stage.FRESH)

    # Update

    def _task_updates(self, analysis: Analysis) -> dict:
        updates = {}
        status = normalize_status(analysis.param("status"))
        if status is not None:
            updates["status"] = status.value
        if analysis.param("title"):
            updates["title"] = analysis.param("title")
        if analysis.parameters.get("description") is not None:
            updates["description"] = analysis.parameters["description"]
        if analysis.param("dueDate"):
            due = parse_date_time(analysis.param("dueDate"), local_now())
            if due is not None:
                updates["due_date"] = due
        return updates

    def _order_updates(self, analysis: Analysis) -> dict:
        updates = {}
        status = normalize_status(analysis.param("status"))
        if status is not None:
            updates["status"] = status.value
        if analysis.param("productName"):
            updates["product_name"] = analysis.param("productName")
        if analysis.parameters.get("quantity") is not None:
            updates["quantity"] = _to_int(analysis.parameters["quantity"])
        return updates

    def _bulk_update(self, user_number: str, entity: str, analysis: Analysis, updates: dict) -> Outcome:
        if not updates:
            example = "mark all tasks as completed" if entity == "task" else "mark all orders as done"
            return Outcome(
                f"What would you like to update about these {entity}s? (e.g., '{example}')", Stage.FRESH
            )

        status_filter = normalize_status(analysis.param("statusFilter"))
        status_filter = status_filter.value if status_filter else None
        date_range = analysis.param("dateRange")
        bulk = self.repo.bulk_update_tasks if entity == "task" else self.repo.bulk_update_orders
        try:
            count = bulk(user_number, updates, status=status_filter, date_range=date_range)
        except Exception as e:
            logger.error(f"Error bulk updating {entity}s: {e}")
            self.repo.discard_changes()
            return Outcome(f"I'm sorry, I couldn't update those {entity}s. Please try again.", Stage.FRESH)
        return Outcome(format_bulk_update(entity, count, updates, status_filter, date_range), Stage.FRESH)

    def update_task(self, user_number: str, analysis: Analysis, text: str) -> Outcome:
        updates = self._task_updates(analysis)
        if is_true(analysis.parameters.get("isBulkUpdate")):
            return self._bulk_update(user_number, "task", analysis, updates)

        try:
            tasks, _ = self.repo.get_tasks(user_number, limit=FUZZY_TASK_LIMIT)
            if not tasks:
                return Outcome("You don't have any tasks to update.", Stage.FRESH)

            result = self.classifier.match_task(text, tasks)
            best = result.best_match
            task = next((task for task in tasks if best is not None and task.id == best.task_id), None)
            if task is None:
                return Outcome(NO_MATCHING_TASK, Stage.FRESH)

            if result.needs_confirmation:
                question = self.confirmations.ask_task_update(
                    user_number, task, updates, len(result.matches), text
                )
                return Outcome(question, Stage.FRESH)

            updated = self.repo.update_task(task.id, updates)
        except Exception as e:
            logger.error(f"Error updating task: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't update that task. Please try again.", Stage.FRESH)
        return Outcome(format_task_updated(updated), Stage.FRESH)

    def update_order(self, user_number: str, analysis: Analysis) -> Outcome:
        updates = self._order_updates(analysis)
        if is_true(analysis.parameters.get("isBulkUpdate")):
            return self._bulk_update(user_number, "order", analysis, updates)

        reference = analysis.param("orderId")
        if reference is None:
            return Outcome("Please specify which order to update (e.g., 'update order #123').", Stage.FRESH)
        reference = str(reference).strip().lstrip("#")
        if not updates:
            return Outcome(ASK_ORDER_FIELDS, Stage.FRESH)

        try:
            order = self._order_from_reference(user_number, reference)
            if order is None:
                return Outcome(
                    f"I couldn't find order {reference}. Please check the order ID and try again.", Stage.FRESH
                )
            updated = self.repo.update_order(order.order_id, updates)
        except Exception as e:
            logger.error(f"Error updating order: {e}")
            self.repo.discard_changes()
            return Outcome(
                "I'm sorry, I couldn't update that order. Please check the order ID and try again.", Stage.FRESH
            )
        return Outcome(format_order_updated(updated), Stage.FRESH)
