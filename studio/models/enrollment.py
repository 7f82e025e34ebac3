"""
Modèle SQLAlchemy du roster d'un cours (inscriptions au niveau de la classe).
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Uuid, func

from studio.database import Base


class Enrollment(Base):
    """Association cours ↔ élèves inscrits (roster prévu)."""
    __tablename__ = "class_students"

    class_instance_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), primary_key=True)
    is_drop_in = Column(Boolean, default=False)  # Inscription issue d'une réservation drop-in
    enrolled_at = Column(DateTime, server_default=func.now())
