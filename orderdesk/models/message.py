from sqlalchemy import Column, DateTime, Integer, Text, func

from orderdesk.database import Base, JSONType


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_sid = Column(Text, nullable=False, unique=True)
    from_number = Column(Text, nullable=False, index=True)
    to_number = Column(Text)
    direction = Column(Text, nullable=False)  # inbound, outbound
    body = Column(Text)
    referred_message_sid = Column(Text)
    # List shown in this message: {"entity_type", "order_ids", "order_mappings", ...}
    context = Column(JSONType)
    media_url = Column(Text)
    media_type = Column(Text)  # audio, image, video, document
    media_content_type = Column(Text)
    extracted_text = Column(Text)
    original_body = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
