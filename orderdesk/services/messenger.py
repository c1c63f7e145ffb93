from typing import Optional

import httpx

from orderdesk.config import settings
from orderdesk.logging_config import get_logger
from orderdesk.services.result import Result

logger = get_logger("messenger")


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class TwilioMessenger:
    """Sends WhatsApp messages through the Twilio REST API."""

    BASE_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_whatsapp_from
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str) -> Result[str]:
        """Send `body` to `to`; the value is the Twilio message SID."""
        if not self.configured:
            return Result.failure("Twilio credentials are not configured", code="not_configured")

        url = f"{self.BASE_URL.format(sid=self.account_sid)}/Messages.json"
        data = {"From": _whatsapp_address(self.from_number), "To": _whatsapp_address(to), "Body": body}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, data=data, auth=(self.account_sid, self.auth_token))
        except httpx.HTTPError as e:
            logger.error(f"Twilio request failed: {e}")
            return Result.failure(str(e), code="transport_error")

        if response.status_code >= 300:
            logger.error(f"Twilio API error {response.status_code}: {response.text[:300]}")
            return Result.failure(response.text[:300], code=f"twilio_{response.status_code}")

        sid = response.json().get("sid")
        logger.info("Message sent", extra={"context": {"to": to, "message_sid": sid}})
        return Result.success(sid)

    def download_media(self, url: str) -> Result[tuple[bytes, Optional[str]]]:
        """Fetch a media attachment; Twilio media URLs need basic auth and redirect."""
        auth = (self.account_sid, self.auth_token) if self.account_sid and self.auth_token else None
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
                response = client.get(url, auth=auth)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Media download failed: {e}")
            return Result.failure(str(e), code="download_failed")
        return Result.success((response.content, response.headers.get("content-type")))


_messenger: Optional[TwilioMessenger] = None


def get_messenger() -> TwilioMessenger:
    global _messenger
    if _messenger is None:
        _messenger = TwilioMessenger()
    return _messenger
