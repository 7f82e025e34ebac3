"""
Modèle SQLAlchemy des notifications in-app.
Écrites uniquement après le commit de la mutation qui les a provoquées.
"""

import uuid
from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, Uuid, func

from studio.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    studio_id = Column(Uuid, nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(10), default="medium")  # low, medium, high
    entity_id = Column(Uuid, nullable=True)
    entity_type = Column(String(20), nullable=True)  # class, student
    details = Column(JSON, nullable=True)
    email_required = Column(Boolean, default=False)
    email_sent = Column(Boolean, default=False)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())
