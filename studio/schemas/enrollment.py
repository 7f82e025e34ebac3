"""
Schémas Pydantic pour la réconciliation des rosters.
"""

import uuid
from typing import List

from pydantic import BaseModel


class RosterUpdate(BaseModel):
    """Roster souhaité pour l'occurrence (liste complète, éventuellement vide)."""
    student_ids: List[uuid.UUID]


class RosterConflict(BaseModel):
    """Retrait refusé : l'élève reste inscrit (conflit non bloquant)."""
    student_id: uuid.UUID
    reason: str  # attendance_recorded


class RosterResult(BaseModel):
    class_id: uuid.UUID
    added: List[uuid.UUID]
    removed: List[uuid.UUID]
    conflicts: List[RosterConflict] = []
    roster: List[uuid.UUID]


class RosterResponse(BaseModel):
    class_id: uuid.UUID
    student_ids: List[uuid.UUID]
