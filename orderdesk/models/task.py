from sqlalchemy import Column, DateTime, Integer, Text, func

from orderdesk.database import Base


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_number = Column(Text, nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text)
    due_date = Column(DateTime(timezone=True))
    status = Column(Text, nullable=False, default="pending")  # pending, processing, completed, cancelled
    original_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
