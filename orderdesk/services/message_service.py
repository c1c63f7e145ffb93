import re
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.models import Message
from orderdesk.services.context_store import ListContext

logger = get_logger("message_service")

# "1. Order ORD-1700000000000-abc123xyz:" as rendered in older outbound lists.
_ORDER_LINE = re.compile(r"(\d+)\.\s*Order\s+([A-Z0-9-]+):", re.IGNORECASE)


def save_inbound(
    db: Session,
    message_sid: str,
    from_number: str,
    to_number: Optional[str],
    body: Optional[str],
    referred_message_sid: Optional[str] = None,
    media: Optional[dict] = None,
) -> Message:
    """Save (or refresh) an inbound message. Body is the processed text."""
    media = media or {}
    message = db.query(Message).filter(Message.message_sid == message_sid).first()
    if message is None:
        message = Message(
            message_sid=message_sid,
            from_number=from_number,
            direction="inbound",
            created_at=datetime.now(timezone.utc),
        )
        db.add(message)
    message.to_number = to_number
    message.body = media.get("extracted_text") or body or ""
    message.referred_message_sid = referred_message_sid
    message.media_url = media.get("url")
    message.media_type = media.get("type")
    message.media_content_type = media.get("content_type")
    message.extracted_text = media.get("extracted_text")
    message.original_body = media.get("original_body")
    db.flush()
    return message


def save_outbound(
    db: Session,
    message_sid: str,
    to_number: str,
    body: str,
    context: Optional[ListContext] = None,
) -> Message:
    """Save a sent message with the list it displayed, so replies to it resolve."""
    message = Message(
        message_sid=message_sid,
        from_number=settings.twilio_whatsapp_from or "",
        to_number=to_number,
        direction="outbound",
        body=body,
        context=context.to_dict() if context is not None else None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def get_message_by_sid(db: Session, message_sid: str) -> Optional[Message]:
    return db.query(Message).filter(Message.message_sid == message_sid).first()


def parse_order_mappings(body: Optional[str]) -> dict:
    return {position: order_id for position, order_id in _ORDER_LINE.findall(body or "")}


def load_reply_context(db: Session, user_number: str, message_sid: str) -> Optional[ListContext]:
    """List context carried by the message the user replied to, if any.

    Prefers the stored snapshot; falls back to order lines in the message body.
    """
    message = get_message_by_sid(db, message_sid)
    if message is None:
        logger.info(
            "Replied-to message not found",
            extra={"context": {"user_number": user_number, "message_sid": message_sid}},
        )
        return None
    if message.direction == "outbound" and message.to_number and message.to_number != user_number:
        return None

    context = ListContext.from_dict(message.context)
    if context is not None and context.entity_type and context.ids:
        return context

    mappings = parse_order_mappings(message.body)
    if mappings:
        ordered = [mappings[key] for key in sorted(mappings, key=int)]
        return ListContext(entity_type="order", order_ids=ordered, order_mappings=mappings)
    return None
