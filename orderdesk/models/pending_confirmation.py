from sqlalchemy import Column, DateTime, Integer, Text

from orderdesk.database import Base, JSONType


class PendingConfirmation(Base):
    __tablename__ = "pending_confirmations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_number = Column(Text, nullable=False, unique=True)
    kind = Column(Text, nullable=False)  # task_update_confirmation, duplicate_order_decision
    subject_id = Column(Text, nullable=False)
    pending_updates = Column(JSONType, nullable=False, default=dict)
    original_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
