"""
Modèle SQLAlchemy des cours.

Une série récurrente est matérialisée : une ligne « ancre » (status SERIES,
parent_reference NULL) porte la définition, puis une ligne par occurrence datée
pointe vers elle via parent_reference. Un cours ponctuel est une ligne seule
avec is_recurring = False et date == end_date.
"""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
    func,
)

from studio.database import Base

STATUS_SCHEDULED = "SCHEDULED"
STATUS_SERIES = "SERIES"


class ClassInstance(Base):
    __tablename__ = "classes"
    __table_args__ = (
        CheckConstraint("capacity IS NULL OR booked_count <= capacity", name="ck_classes_capacity"),
        CheckConstraint("booked_count >= 0", name="ck_classes_booked_count"),
        CheckConstraint("date <= end_date", name="ck_classes_dates"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    studio_id = Column(Uuid, nullable=True, index=True)
    parent_reference = Column(
        Uuid, ForeignKey("classes.id", ondelete="CASCADE"), nullable=True, index=True
    )  # NULL = cours ponctuel ou ancre de série

    name = Column(String(200), nullable=False)
    date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)  # == date pour une occurrence, fin de récurrence pour l'ancre
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    teacher_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    location_id = Column(Uuid, ForeignKey("locations.id"), nullable=False)

    is_recurring = Column(Boolean, nullable=False, default=False)
    is_drop_in = Column(Boolean, nullable=False, default=False)
    capacity = Column(Integer, nullable=True)
    drop_in_price = Column(Numeric(10, 2), nullable=True)
    booked_count = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default=STATUS_SCHEDULED)  # SCHEDULED, SERIES
    notes = Column(Text, nullable=True)
    attendance_flagged_at = Column(DateTime, nullable=True)  # Alerte « présences non saisies » envoyée

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def is_anchor(self) -> bool:
        """Vrai pour la ligne de définition d'une série récurrente."""
        return bool(self.is_recurring) and self.parent_reference is None

    @property
    def series_id(self):
        """Identifiant de la série : l'ancre elle-même ou la ligne référencée."""
        return self.parent_reference or self.id
