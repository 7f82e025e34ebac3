"""
Schémas Pydantic pour les réservations drop-in et la disponibilité.
"""

import uuid
from typing import Optional

from pydantic import BaseModel


class BookingCreate(BaseModel):
    student_id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None


class BookingResult(BaseModel):
    class_id: uuid.UUID
    student_id: uuid.UUID
    booked: bool
    duplicate: bool = False  # Déjà réservé : aucune place consommée
    booked_count: int
    spots_remaining: Optional[int]


class AvailabilityResponse(BaseModel):
    class_id: uuid.UUID
    is_drop_in: bool
    capacity: Optional[int]
    booked_count: int
    spots_remaining: Optional[int]
