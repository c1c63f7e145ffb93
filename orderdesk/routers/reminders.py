import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from orderdesk.config import settings
from orderdesk.database import get_db
from orderdesk.logging_config import get_logger
from orderdesk.schemas.reminder import OrderReminderResponse
from orderdesk.services.messenger import TwilioMessenger, get_messenger
from orderdesk.services.reminder_service import send_pending_order_reminders

logger = get_logger("reminders")

router = APIRouter()


def verify_cron_token(
    authorization: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
) -> None:
    """Accept "Bearer <token>", the raw token, or ?token=. Open when no token is configured."""
    expected = settings.cron_secret_token
    if not expected:
        return
    provided = authorization or token
    if provided not in (expected, f"Bearer {expected}"):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.api_route("/reminders/orders", methods=["GET", "POST"], response_model=OrderReminderResponse)
def order_reminders(
    _: None = Depends(verify_cron_token),
    db: Session = Depends(get_db),
    messenger: TwilioMessenger = Depends(get_messenger),
):
    """Send today's pending-order reminders (called by cron)."""
    started = time.monotonic()
    try:
        summary = send_pending_order_reminders(db, messenger)
        db.commit()
    except Exception as e:
        logger.error(f"Order reminders job failed: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Order reminders job failed")

    logger.info(
        "Timing",
        extra={"context": {"stage": "order_reminders_ms", "elapsed_ms": round((time.monotonic() - started) * 1000, 2)}},
    )
    return OrderReminderResponse(
        success=True,
        users=summary["users"],
        orders=summary["orders"],
        reminders_sent=summary["reminders_sent"],
        failed=summary["failed"],
        message="Order reminders sent" if summary["users"] else "No pending orders due today",
    )
