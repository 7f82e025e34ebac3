"""
Modèle SQLAlchemy pour la table students.
"""

import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Uuid, func

from studio.database import Base


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    studio_id = Column(Uuid, nullable=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    parent_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
