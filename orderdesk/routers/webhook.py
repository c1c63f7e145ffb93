from typing import Optional
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import ValidationError
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.logging_config import get_logger, user_logger
from orderdesk.schemas.webhook import InboundMessage
from orderdesk.services.dialogue_router import DialogueRouter
from orderdesk.services.intent_classifier import IntentClassifier, get_intent_classifier
from orderdesk.services.media_service import first_audio, transcribe_media
from orderdesk.services.message_service import save_inbound, save_outbound
from orderdesk.services.messenger import TwilioMessenger, get_messenger

logger = get_logger("webhook")

router = APIRouter()

VOICE_NOTE_FAILED = "I couldn't understand that voice message. Please try again or send it as text."


def twiml_response(message: Optional[str] = None) -> Response:
    """TwiML for Twilio; an empty <Response/> when the reply was sent separately."""
    if message is None:
        twiml = '<?xml version="1.0" encoding="UTF-8"?>\n<Response></Response>'
    else:
        twiml = f'<?xml version="1.0" encoding="UTF-8"?>\n<Response>\n    <Message>{escape(message)}</Message>\n</Response>'
    return Response(content=twiml, media_type="application/xml")


def _media_fields(inbound: InboundMessage) -> dict:
    if not inbound.media:
        return {}
    media = inbound.media[0]
    return {
        "url": media.url,
        "type": media.kind,
        "content_type": media.content_type,
        "original_body": inbound.body or None,
    }


def handle_inbound(
    db: Session,
    inbound: InboundMessage,
    classifier: IntentClassifier,
    messenger: TwilioMessenger,
) -> Optional[str]:
    """
    Store, route and answer one inbound message.

    Returns the reply text when it still has to go back inline as TwiML,
    None when the messenger already delivered it.
    """
    log = user_logger("webhook", inbound.from_number)
    text = inbound.body.strip()
    media = _media_fields(inbound)

    audio = first_audio(inbound.media)
    if audio is not None:
        transcript = transcribe_media(audio, messenger, classifier.llm)
        if transcript.ok:
            media["extracted_text"] = transcript.value
            text = transcript.value
        else:
            log.warning("Voice note not transcribed", context={"error_code": transcript.error_code})

    save_inbound(
        db,
        inbound.message_sid,
        inbound.from_number,
        inbound.to_number,
        inbound.body,
        inbound.referred_message_sid,
        media,
    )
    db.commit()

    if audio is not None and not text:
        return _deliver(db, inbound.from_number, VOICE_NOTE_FAILED, None, messenger)

    outcome = DialogueRouter(db, classifier).handle(
        inbound.from_number,
        text,
        reply_reference_id=inbound.referred_message_sid,
        is_forwarded=inbound.is_forwarded,
    )
    db.commit()
    log.info(
        "Inbound handled",
        context={"message_sid": inbound.message_sid, "stage": outcome.stage.value},
    )
    return _deliver(db, inbound.from_number, outcome.reply, outcome.context, messenger)


def _deliver(db: Session, to: str, reply: str, context, messenger: TwilioMessenger) -> Optional[str]:
    if not messenger.configured:
        return reply

    result = messenger.send(to, reply)
    if not result.ok:
        logger.warning(
            "Reply not sent, answering inline",
            extra={"context": {"user_number": to, "error_code": result.error_code}},
        )
        return reply

    if result.value:
        try:
            save_outbound(db, result.value, to, reply, context)
            db.commit()
        except Exception as e:
            logger.error(f"Error saving outbound message: {e}")
            db.rollback()
    return None


@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: Session = Depends(get_db),
    classifier: IntentClassifier = Depends(get_intent_classifier),
    messenger: TwilioMessenger = Depends(get_messenger),
):
    """Twilio WhatsApp webhook."""
    form = await request.form()
    try:
        inbound = InboundMessage.from_form(dict(form))
    except ValidationError:
        logger.error("Missing required fields in webhook form")
        raise HTTPException(status_code=400, detail="Missing required fields")

    try:
        reply = await run_in_threadpool(handle_inbound, db, inbound, classifier, messenger)
    except Exception as e:
        logger.error(f"Error handling inbound message {inbound.message_sid}: {e}")
        db.rollback()
        reply = "I'm sorry, something went wrong. Please try again."
    return twiml_response(reply)


@router.get("/webhook/whatsapp")
async def whatsapp_webhook_status():
    return {"status": "ok", "message": "WhatsApp webhook endpoint is active"}
