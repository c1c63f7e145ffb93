"""Per-message dialogue routing.

A message is offered to each stage in a fixed order and the first stage that
claims it produces the reply:

1. forwarded message that reads as an order (or is unreadable) creates an order
2. reply to a list message acts on the quoted items
3. "next" / "more" continues the last paginated list
4. a live pending confirmation consumes the answer
5. anything else is classified afresh
"""

import time
from typing import Optional

from sqlalchemy.orm import Session

from orderdesk.logging_config import get_logger
from orderdesk.schemas.analysis import Analysis
from orderdesk.services.command_service import CommandService
from orderdesk.services.confirmation_service import ConfirmationService
from orderdesk.services.context_store import ContextStore, ListContext
from orderdesk.services.dialogue_state import (
    EntityType,
    Intent,
    Outcome,
    Stage,
    is_pagination_trigger,
)
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.intent_classifier import ClassifierError, IntentClassifier
from orderdesk.services.message_service import load_reply_context
from orderdesk.services.pagination_service import PaginationService
from orderdesk.services.reply_service import ReplyResolver
from orderdesk.services.response_formatter import CLASSIFIER_ERROR_MESSAGE, HELP_MESSAGE

logger = get_logger("dialogue_router")


class DialogueRouter:
    def __init__(self, db: Session, classifier: IntentClassifier):
        self.db = db
        self.classifier = classifier
        self.repo = EntityRepository(db)
        self.store = ContextStore(db)
        self.pagination = PaginationService(self.repo, self.store)
        self.confirmations = ConfirmationService(self.repo, self.store)
        self.replies = ReplyResolver(self.repo, classifier)
        self.commands = CommandService(self.repo, self.store, classifier, self.pagination, self.confirmations)

    def handle(
        self,
        user_id: str,
        raw_text: str,
        reply_reference_id: Optional[str] = None,
        is_forwarded: bool = False,
        original_text: Optional[str] = None,
    ) -> Outcome:
        """Produce exactly one reply for one inbound message."""
        text = (raw_text or "").strip()
        if not text:
            return Outcome(HELP_MESSAGE, Stage.FRESH)

        started = time.monotonic()
        try:
            outcome = self._route(user_id, text, reply_reference_id, is_forwarded, original_text)
        except ClassifierError as e:
            logger.error(f"Classifier unavailable: {e}")
            self.db.rollback()
            outcome = Outcome(CLASSIFIER_ERROR_MESSAGE, Stage.FRESH)
        except Exception as e:
            logger.error(f"Error routing message: {e}")
            self.db.rollback()
            outcome = Outcome(CLASSIFIER_ERROR_MESSAGE, Stage.FRESH)

        logger.info(
            "Message routed",
            extra={
                "context": {
                    "user_number": user_id,
                    "stage": outcome.stage.value,
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                }
            },
        )
        return outcome

    def _route(
        self,
        user_id: str,
        text: str,
        reply_reference_id: Optional[str],
        is_forwarded: bool,
        original_text: Optional[str],
    ) -> Outcome:
        forwarded_analysis: Optional[Analysis] = None
        if is_forwarded:
            forwarded_analysis = self.classifier.classify(text, original_text)
            if forwarded_analysis.intent in (Intent.CREATE, Intent.UNKNOWN):
                logger.info("Forwarded message treated as order", extra={"context": {"user_number": user_id}})
                as_order = forwarded_analysis.model_copy(
                    update={"intent": Intent.CREATE, "entity_type": EntityType.ORDER}
                )
                return self.commands.create_order(user_id, as_order, text, Stage.FORWARDED)

        if reply_reference_id:
            context = self._reply_context(user_id, reply_reference_id)
            if context is not None:
                outcome = self.replies.resolve(user_id, text, context, original_text)
                if outcome is not None:
                    return outcome

        if is_pagination_trigger(text):
            return self.pagination.next_page(user_id)

        confirmation = self.store.load_confirmation(user_id)
        if confirmation is not None:
            return self.confirmations.resolve(user_id, text, confirmation)

        analysis = forwarded_analysis or self.classifier.classify(text, original_text)
        return self.commands.execute(user_id, analysis, text)

    def _reply_context(self, user_id: str, reply_reference_id: str) -> Optional[ListContext]:
        context = load_reply_context(self.db, user_id, reply_reference_id)
        if context is None:
            context = self.store.load_context(user_id)
        if context is None or not context.entity_type:
            return None
        return context
