from sqlalchemy import Column, DateTime, Integer, Text, UniqueConstraint

from orderdesk.database import Base, JSONType


class PaginationState(Base):
    __tablename__ = "pagination_state"
    __table_args__ = (UniqueConstraint("user_number", "entity_type", name="uq_pagination_user_entity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_number = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=False)  # task, order
    offset = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)
    filters = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
