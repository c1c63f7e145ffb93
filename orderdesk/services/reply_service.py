from typing import List, Optional

from orderdesk.logging_config import get_logger
from orderdesk.schemas.analysis import Analysis
from orderdesk.services.context_store import ListContext
from orderdesk.services.date_parser import local_now, parse_date_time
from orderdesk.services.dialogue_state import (
    Intent,
    Outcome,
    Stage,
    is_details_request,
    normalize_status,
    status_from_text,
)
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.intent_classifier import IntentClassifier
from orderdesk.services.reference_resolver import resolve_multiple, resolve_single
from orderdesk.services.response_formatter import (
    format_order_details,
    format_order_updated,
    format_task_details,
    format_task_updated,
)

logger = get_logger("reply_service")

ASK_ORDER_FIELDS = "What would you like to update about this order? (e.g., 'mark as done', 'update status to processing')"
ASK_TASK_FIELDS = "What would you like to update about this task? (e.g., 'mark as completed', 'change title to...')"


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def _position_key(value) -> Optional[str]:
    if value is None:
        return None
    key = str(value).strip().lstrip("#")
    return key or None


class ReplyResolver:
    """Interprets a reply to a list message against the list it quoted."""

    def __init__(self, repo: EntityRepository, classifier: IntentClassifier):
        self.repo = repo
        self.classifier = classifier

    def resolve(
        self,
        user_number: str,
        text: str,
        context: ListContext,
        original_text: Optional[str] = None,
    ) -> Optional[Outcome]:
        """Outcome when the reply is about the quoted list, None to keep routing."""
        if not context.ids:
            return None

        analysis = self.classifier.classify(text, original_text)
        details = is_details_request(text)
        effective = analysis

        if analysis.intent == Intent.UNKNOWN:
            status = status_from_text(text)
            if status is not None:
                effective = Analysis(
                    intent=Intent.UPDATE, entity_type=context.entity_type, parameters={"status": status.value}
                )
            elif details:
                effective = Analysis(
                    intent=Intent.GET, entity_type=context.entity_type, parameters=analysis.parameters
                )

        try:
            if effective.intent == Intent.UPDATE:
                return self._update(user_number, text, effective, context)
            if effective.intent == Intent.GET or details:
                return self._details(user_number, text, effective, context, details)
        except Exception as e:
            logger.error(f"Error processing reply: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I encountered an error processing your reply. Please try again.", Stage.REPLY)
        return None

    def _targets(self, text: str, key, context: ListContext) -> List:
        """Ids the reply points at; every listed id when nothing specific parses."""
        position_key = _position_key(key)
        if position_key is not None and context.mappings.get(position_key) is not None:
            return [context.mappings[position_key]]

        targets = []
        for position in resolve_multiple(text, context.max_position):
            target = context.id_at(position)
            if target is not None and target not in targets:
                targets.append(target)
        if targets:
            return targets

        position = resolve_single(text, context.max_position)
        if position is not None and context.id_at(position) is not None:
            return [context.id_at(position)]

        return list(context.ids)

    def _update(self, user_number: str, text: str, analysis: Analysis, context: ListContext) -> Outcome:
        status = normalize_status(analysis.param("status"))

        if context.entity_type == "order":
            if status is None:
                return Outcome(ASK_ORDER_FIELDS, Stage.REPLY)
            targets = self._targets(text, analysis.param("orderId"), context)
            try:
                updated = [self.repo.update_order(order_id, {"status": status.value}) for order_id in targets]
            except Exception as e:
                logger.error(f"Error updating orders from reply: {e}")
                self.repo.discard_changes()
                return Outcome("I'm sorry, I couldn't update the order(s). Please try again.", Stage.REPLY)
            if len(updated) == 1:
                return Outcome(format_order_updated(updated[0]), Stage.REPLY)
            return Outcome(
                f"I've updated {len(updated)} {_plural(len(updated), 'order')} to {status.value}.", Stage.REPLY
            )

        updates = {}
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
        if not updates:
            return Outcome(ASK_TASK_FIELDS, Stage.REPLY)

        targets = self._targets(text, analysis.param("taskId"), context)
        try:
            updated = [self.repo.update_task(int(task_id), updates) for task_id in targets]
        except Exception as e:
            logger.error(f"Error updating tasks from reply: {e}")
            self.repo.discard_changes()
            return Outcome("I'm sorry, I couldn't update the task(s). Please try again.", Stage.REPLY)
        if len(updated) == 1:
            return Outcome(format_task_updated(updated[0]), Stage.REPLY)
        return Outcome(
            f"I've updated {len(updated)} {_plural(len(updated), 'task')} to {updates.get('status') or 'the new status'}.",
            Stage.REPLY,
        )

    def _single_target(self, text: str, key, context: ListContext):
        position_key = _position_key(key)
        if position_key is not None and context.mappings.get(position_key) is not None:
            return context.mappings[position_key]
        position = resolve_single(text, context.max_position)
        return context.id_at(position) if position is not None else None

    def _details(
        self, user_number: str, text: str, analysis: Analysis, context: ListContext, asked_for_details: bool
    ) -> Optional[Outcome]:
        entity = context.entity_type
        key = analysis.param("orderId") if entity == "order" else analysis.param("taskId")
        target = self._single_target(text, key, context)

        if target is None:
            if not asked_for_details:
                return None
            return Outcome(
                f'Which {entity} would you like details for? Reply with its number from the list (e.g., "1").',
                Stage.REPLY,
            )

        if entity == "order":
            order = self.repo.get_order_by_order_id(target, user_number)
            if order is None:
                return Outcome(
                    f"I couldn't find order {target}. Please check the order ID and try again.", Stage.REPLY
                )
            return Outcome(format_order_details(order), Stage.REPLY)

        task = self.repo.get_task(int(target), user_number)
        if task is None:
            return Outcome(f"I couldn't find task {target}. Please ask for your tasks again.", Stage.REPLY)
        return Outcome(format_task_details(task), Stage.REPLY)
