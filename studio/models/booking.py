"""
Modèle SQLAlchemy des réservations drop-in.
Le paiement est traité par un service externe ; seule la place est suivie ici.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func

from studio.database import Base


class DropInBooking(Base):
    __tablename__ = "drop_in_bookings"
    __table_args__ = (
        UniqueConstraint("class_instance_id", "student_id", name="uq_drop_in_bookings_student"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_instance_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE, CANCELLED
    created_at = Column(DateTime, server_default=func.now())
    cancelled_at = Column(DateTime, nullable=True)
