from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.user import new_id, utcnow


class Todo(Base):
    __tablename__ = "todos"
    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=True)
    # denormalized: no tag table, each todo carries its own list
    tags = Column(JSON, nullable=False, default=list)
    completed = Column(Boolean, nullable=False, default=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, index=True)

    created_by = relationship("User", backref="todos")
