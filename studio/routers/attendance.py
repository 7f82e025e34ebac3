"""
Router du balayage des présences non saisies (consulté par le job planifié
ou par un tableau de bord).
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from studio.database import get_db
from studio.schemas.attendance import OverdueAttendance
from studio.services import attendance_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


@router.get("/overdue", response_model=List[OverdueAttendance], summary="Présences en retard")
def list_overdue(today: Optional[date] = Query(None), db: Session = Depends(get_db)):
    """Occurrences passées avec élèves inscrits, sans présence saisie et pas encore signalées."""
    return attendance_service.list_overdue_attendance(db, today)
