"""
Schémas Pydantic pour la feuille de présence d'une occurrence.
"""

import uuid
import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, field_validator

AttendanceStatus = Literal["present", "late", "authorised", "unauthorised"]


class AttendanceMark(BaseModel):
    """Statut saisi pour une inscription d'occurrence."""
    enrollment_id: uuid.UUID
    status: AttendanceStatus
    notes: Optional[str] = None


class AttendanceSaveRequest(BaseModel):
    """Saisie complète : les élèves absents de la liste restent « non marqués »."""
    records: List[AttendanceMark]

    @field_validator("records")
    @classmethod
    def one_mark_per_enrollment(cls, v: List[AttendanceMark]) -> List[AttendanceMark]:
        ids = [r.enrollment_id for r in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Une inscription ne peut recevoir qu'un seul statut par saisie.")
        return v


class AttendanceEntry(BaseModel):
    enrollment_id: uuid.UUID
    student_id: uuid.UUID
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    detail_available: bool = True      # False si la fiche élève est introuvable
    status: Optional[AttendanceStatus] = None  # None = non marqué
    notes: Optional[str] = None


class AttendanceSheet(BaseModel):
    class_id: uuid.UUID
    date: dt.date
    entries: List[AttendanceEntry]


class AttendanceSaveResult(BaseModel):
    class_id: uuid.UUID
    saved: int
    unmarked: int


class OverdueAttendance(BaseModel):
    """Occurrence passée avec roster mais sans aucune présence saisie."""
    class_id: uuid.UUID
    studio_id: Optional[uuid.UUID] = None
    name: str
    date: dt.date
    teacher_id: uuid.UUID
    nb_students: int
