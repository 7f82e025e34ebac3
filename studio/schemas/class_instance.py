"""
Schémas Pydantic pour les cours (création, modification et suppression par portée).

Note : on importe datetime en tant que module (dt) pour éviter le conflit de nommage
entre le champ `date` et le type `datetime.date` dans Pydantic v2.
"""

import uuid
import datetime as dt
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator

from studio.schemas.enrollment import RosterResult


class ModificationScope(str, Enum):
    """Portée d'une modification sur un cours récurrent."""
    SINGLE = "single"
    FUTURE = "future"
    ALL = "all"


class ClassCreate(BaseModel):
    """
    Corps de création d'un cours.
    Les champs conditionnels (date / weekday / recurrence_end_date) sont validés
    par le service, qui lève ScheduleValidationError avant toute écriture.
    """
    name: str = ""
    studio_id: Optional[uuid.UUID] = None
    teacher_id: Optional[uuid.UUID] = None
    location_id: Optional[uuid.UUID] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    is_recurring: bool = False
    date: Optional[dt.date] = None                 # cours ponctuel
    weekday: Optional[int] = None                  # 0 = dimanche … 6 = samedi
    recurrence_end_date: Optional[dt.date] = None  # borne incluse
    is_drop_in: bool = False
    capacity: Optional[int] = None
    drop_in_price: Optional[Decimal] = None
    notes: Optional[str] = None
    student_ids: List[uuid.UUID] = []

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class ClassUpdate(BaseModel):
    """
    Corps de modification. `scope` est obligatoire pour un cours récurrent.
    Si student_ids est fourni, le roster de l'occurrence est réconcilié
    (portée single ou cours ponctuel uniquement).
    """
    scope: Optional[ModificationScope] = None
    name: Optional[str] = None
    teacher_id: Optional[uuid.UUID] = None
    location_id: Optional[uuid.UUID] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    is_drop_in: Optional[bool] = None
    capacity: Optional[int] = None
    drop_in_price: Optional[Decimal] = None
    notes: Optional[str] = None
    student_ids: Optional[List[uuid.UUID]] = None

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Le nom du cours ne peut pas être vide.")
        return v.strip() if v else v


class ClassResponse(BaseModel):
    id: uuid.UUID
    studio_id: Optional[uuid.UUID] = None
    parent_reference: Optional[uuid.UUID]
    name: str
    date: dt.date
    end_date: dt.date
    start_time: dt.time
    end_time: dt.time
    teacher_id: uuid.UUID
    location_id: uuid.UUID
    is_recurring: bool
    is_drop_in: bool
    capacity: Optional[int]
    drop_in_price: Optional[Decimal]
    booked_count: int
    spots_remaining: Optional[int] = None
    nb_students: int = 0
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ClassCreateResult(BaseModel):
    """Résultat d'une création : l'ancre (si récurrent) et les occurrences datées."""
    series_id: Optional[uuid.UUID]
    instance_ids: List[uuid.UUID]
    dates: List[dt.date]
    enrolled_students: int


class ClassEditResult(BaseModel):
    scope: Optional[ModificationScope]
    updated_ids: List[uuid.UUID]
    updated_count: int
    roster: Optional[RosterResult] = None


class ClassDeleteResult(BaseModel):
    scope: Optional[ModificationScope]
    deleted_ids: List[uuid.UUID]
    deleted_count: int


class SeriesResponse(BaseModel):
    """Agrégat d'une série : ancre + occurrences datées triées."""
    anchor: ClassResponse
    instances: List[ClassResponse]
