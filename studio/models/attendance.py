"""
Modèles SQLAlchemy des présences.

- InstanceEnrollment : photographie du roster pour une occurrence datée,
  créée à la première consultation de la feuille de présence.
- AttendanceRecord : statut d'un élève pour cette occurrence (au plus un par inscription).
  Son existence verrouille l'inscription correspondante.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid, func

from studio.database import Base

ATTENDANCE_STATUSES = ("present", "late", "authorised", "unauthorised")


class InstanceEnrollment(Base):
    __tablename__ = "instance_enrollments"
    __table_args__ = (
        UniqueConstraint("class_instance_id", "student_id", name="uq_instance_enrollments_student"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    class_instance_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    instance_enrollment_id = Column(
        Uuid, ForeignKey("instance_enrollments.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status = Column(String(20), nullable=False)  # present, late, authorised, unauthorised
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
