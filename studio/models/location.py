"""
Modèle SQLAlchemy pour les salles du studio.
"""

import uuid
from sqlalchemy import Column, DateTime, String, Uuid, func

from studio.database import Base


class Location(Base):
    __tablename__ = "locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    studio_id = Column(Uuid, nullable=True, index=True)
    name = Column(String(100), nullable=False)
    address = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
