from sqlalchemy import Column, DateTime, Integer, Text, func

from orderdesk.database import Base, JSONType


class ConversationContext(Base):
    """Last list shown to a user. One row per user, overwritten on every list."""

    __tablename__ = "user_message_context"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_number = Column(Text, nullable=False, unique=True)
    entity_type = Column(Text)  # task, order
    order_ids = Column(JSONType, nullable=False, default=list)
    task_ids = Column(JSONType, nullable=False, default=list)
    order_mappings = Column(JSONType, nullable=False, default=dict)
    task_mappings = Column(JSONType, nullable=False, default=dict)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
