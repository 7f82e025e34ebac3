"""
Modèle SQLAlchemy pour les utilisateurs du studio.
L'authentification est gérée hors de ce service : seuls les champs utiles
à la planification et aux notifications sont conservés.
"""

import uuid
from sqlalchemy import Column, DateTime, String, Uuid, func

from studio.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    studio_id = Column(Uuid, nullable=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False)  # OWNER, TEACHER, PARENT
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
