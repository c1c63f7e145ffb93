import json
import re
import time
from typing import Optional, Sequence

import httpx
from pydantic import ValidationError

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.schemas.analysis import Analysis, TaskMatchResult
from orderdesk.services.dialogue_state import is_true
from orderdesk.services.llm import LLMProvider, OpenAIProvider
from orderdesk.services.llm.openai_provider import OpenAIError

logger = get_logger("intent_classifier")

ANALYZE_PROMPT = """Analyze the following WhatsApp message and extract the intent, entity type, and parameters.
Return ONLY a valid JSON object with this exact structure:
{{
  "intent": "create" | "get" | "update" | "unknown",
  "entityType": "task" | "reminder" | "order" | "product" | null,
  "parameters": {{
    "title": "string (for tasks/reminders)",
    "description": "string (optional, for tasks)",
    "dueDate": "string (for tasks/reminders, relative like 'tomorrow 5pm' or absolute)",
    "orderId": "string (for orders, the ID or list number mentioned)",
    "productName": "string (for orders/products)",
    "quantity": number,
    "items": [{{"productName": "string", "quantity": number}}] (only when several products are ordered at once),
    "fulfillmentDate": "string (when the order must be fulfilled, e.g. 'tomorrow', '15th November')",
    "status": "pending" | "processing" | "completed" | "cancelled" (for updates and status filters),
    "taskId": number (for task updates, the ID or list number mentioned),
    "dateRange": "string (filters such as 'today', 'yesterday', 'this week', 'last week', 'this month', 'last month', 'this year')",
    "isBulkUpdate": boolean (true for 'mark all ...' style updates),
    "statusFilter": "string (bulk updates: only touch items currently in this status)",
    "summary": boolean (true when the user asks for an order summary or totals)
  }}
}}

Rules:
- "create": new task, reminder or order ("Remind me to...", "Have an appointment at...", "Order 2 cakes...").
- "get": view or list tasks, reminders or orders ("show my tasks", "orders this week", "details of order 2").
- "update": change an existing item ("mark task 1 as completed", "update order #123 to processing", "done").
- "unknown": only when the intent truly cannot be determined.
- Appointments, tasks, reminders and events are "task" or "reminder"; purchases and products are "order" or "product".
- Keep dates exactly as written by the user; do not convert them.

Examples:
- "Have an appointment at 2PM on Saturday 15th November" -> {{"intent": "create", "entityType": "task", "parameters": {{"title": "Appointment", "dueDate": "Saturday 15th November 2PM"}}}}
- "Create a task to buy groceries tomorrow" -> {{"intent": "create", "entityType": "task", "parameters": {{"title": "buy groceries", "dueDate": "tomorrow"}}}}
- "Mark all pending orders for today as done" -> {{"intent": "update", "entityType": "order", "parameters": {{"status": "completed", "isBulkUpdate": true, "statusFilter": "pending", "dateRange": "today"}}}}

Message: "{message}"
{original}
Return ONLY the JSON object, no other text:"""

ORIGINAL_TEXT_HINT = 'The message was translated; the original text was: "{original}"\n'

MATCH_PROMPT = """You are analyzing a user's message to find which task they want to update from their list of tasks.

User's message: "{message}"

Available tasks:
{tasks}

Consider date references (e.g. "15th", "from 15th to 19th"), task titles or keywords, and context clues.

Return ONLY a valid JSON object with this exact structure:
{{
  "matches": [
    {{"taskId": number, "confidence": number between 0.0 and 1.0, "reason": "string"}}
  ],
  "needsConfirmation": boolean
}}

Rules:
- confidence >= 0.8 and only one match -> needsConfirmation: false
- confidence < 0.8 OR several matches with confidence > 0.6 -> needsConfirmation: true
- Sort matches by confidence, highest first
- If no good match (all confidence < 0.5), return an empty matches array

Return ONLY the JSON object, no other text:"""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

CONFIDENT_MATCH = 0.8
AMBIGUOUS_MATCH = 0.6


class ClassifierError(Exception):
    """The language model could not be reached or answered with an error."""


def _extract_json(content: str) -> Optional[dict]:
    match = _JSON_OBJECT.search(content or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _describe_task(task) -> str:
    due = task.due_date.strftime("%A, %B %d, %Y") if task.due_date else "No due date"
    return (
        f'Task ID: {task.id}, Title: "{task.title}", Description: {task.description or "None"}, '
        f"Due Date: {due}, Status: {task.status}"
    )


class IntentClassifier:
    """LLM-backed reading of free text into an Analysis.

    Malformed model output degrades to an unknown analysis (or an empty task
    match); only transport failures raise ClassifierError.
    """

    def __init__(self, llm: Optional[LLMProvider] = None, model: Optional[str] = None):
        self.llm = llm or OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.openai_model)
        self.model = model or settings.openai_model

    def _generate(self, prompt: str, stage: str) -> str:
        started = time.monotonic()
        try:
            response = self.llm.generate(
                [{"role": "user", "content": prompt}],
                model=self.model,
                temperature=0.0,
                max_tokens=800,
                json_mode=True,
                timeout_seconds=settings.intent_timeout_seconds,
            )
        except (httpx.HTTPError, OpenAIError) as exc:
            logger.warning(f"Classifier LLM call failed at {stage}: {exc}")
            raise ClassifierError(str(exc)) from exc
        logger.info(
            "Timing",
            extra={
                "context": {
                    "stage": stage,
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
                    "model_name": self.model,
                }
            },
        )
        return response.content

    def classify(self, text: str, original_text: Optional[str] = None) -> Analysis:
        original = ""
        if original_text and original_text.strip() and original_text.strip() != (text or "").strip():
            original = ORIGINAL_TEXT_HINT.format(original=original_text.strip())
        content = self._generate(ANALYZE_PROMPT.format(message=text, original=original), "intent_llm_ms")

        data = _extract_json(content)
        if data is None:
            logger.warning(f"No JSON in classifier response: {content[:200]!r}")
            return Analysis.unknown()
        try:
            return Analysis.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid classifier payload: {e}")
            return Analysis.unknown()

    def match_task(self, text: str, tasks: Sequence) -> TaskMatchResult:
        if not tasks:
            return TaskMatchResult.empty()

        listing = "\n".join(f"{index}. {_describe_task(task)}" for index, task in enumerate(tasks, 1))
        content = self._generate(MATCH_PROMPT.format(message=text, tasks=listing), "task_match_llm_ms")

        data = _extract_json(content)
        if data is None:
            logger.warning(f"No JSON in task match response: {content[:200]!r}")
            return TaskMatchResult.empty()
        try:
            result = TaskMatchResult.model_validate(
                {
                    "matches": data.get("matches") or [],
                    "needs_confirmation": is_true(data.get("needsConfirmation")),
                }
            )
        except ValidationError as e:
            logger.warning(f"Invalid task match payload: {e}")
            return TaskMatchResult.empty()

        known_ids = {task.id for task in tasks}
        matches = sorted(
            (match for match in result.matches if match.task_id in known_ids),
            key=lambda match: match.confidence,
            reverse=True,
        )
        strong = [match for match in matches if match.confidence > AMBIGUOUS_MATCH]
        needs_confirmation = bool(
            matches
            and (result.needs_confirmation or matches[0].confidence < CONFIDENT_MATCH or len(strong) > 1)
        )
        return TaskMatchResult(matches=matches, needs_confirmation=needs_confirmation)


_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier
