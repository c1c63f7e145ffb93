from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

REPLY_REFERENCE_FIELDS = (
    "OriginalRepliedMessageSid",
    "ReferredMessageSid",
    "ReferencedMessageSid",
    "InReplyToMessageSid",
    "QuotedMessageSid",
    "ContextMessageSid",
)


class MediaItem(BaseModel):
    url: str
    content_type: Optional[str] = None

    @property
    def kind(self) -> str:
        content_type = (self.content_type or "").lower()
        for prefix in ("audio", "image", "video"):
            if content_type.startswith(prefix):
                return prefix
        return "document"


class InboundMessage(BaseModel):
    """Twilio WhatsApp webhook form, reduced to the fields routing needs."""

    from_number: str = Field(min_length=1, validation_alias=AliasChoices("From", "from_number"))
    to_number: Optional[str] = Field(default=None, validation_alias=AliasChoices("To", "to_number"))
    body: str = Field(default="", validation_alias=AliasChoices("Body", "body"))
    message_sid: str = Field(min_length=1, validation_alias=AliasChoices("MessageSid", "SmsMessageSid", "message_sid"))
    is_forwarded: bool = False
    referred_message_sid: Optional[str] = None
    media: list[MediaItem] = Field(default_factory=list)

    @classmethod
    def from_form(cls, form: dict) -> "InboundMessage":
        data = {key: value for key, value in form.items() if isinstance(value, str)}

        referred = next(
            (data[name].strip() for name in REPLY_REFERENCE_FIELDS if data.get(name, "").strip()),
            None,
        )
        forwarded = data.get("Forwarded", "").strip().lower() in {"true", "1", "yes"} or (
            data.get("FrequentlyForwarded", "").strip().lower() in {"true", "1", "yes"}
        )

        media = []
        try:
            num_media = int(data.get("NumMedia") or 0)
        except ValueError:
            num_media = 0
        for index in range(num_media):
            url = data.get(f"MediaUrl{index}")
            if url:
                media.append(MediaItem(url=url, content_type=data.get(f"MediaContentType{index}")))

        return cls.model_validate(
            {
                **data,
                "is_forwarded": forwarded,
                "referred_message_sid": referred,
                "media": media,
            }
        )
