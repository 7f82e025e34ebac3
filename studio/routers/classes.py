"""
Router pour la planification des cours : création, modification et suppression
par portée, roster, feuille de présence et disponibilité drop-in.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from studio.database import get_db
from studio.exceptions import ClassNotFoundError
from studio.schemas.attendance import AttendanceSaveRequest, AttendanceSaveResult, AttendanceSheet
from studio.schemas.booking import AvailabilityResponse
from studio.schemas.class_instance import (
    ClassCreate,
    ClassCreateResult,
    ClassDeleteResult,
    ClassEditResult,
    ClassResponse,
    ClassUpdate,
    ModificationScope,
    SeriesResponse,
)
from studio.schemas.enrollment import RosterResponse, RosterResult, RosterUpdate
from studio.services import attendance_service, capacity_service, enrollment_service, schedule_service

router = APIRouter(prefix="/api/v1/classes", tags=["Cours"])


@router.post("", response_model=ClassCreateResult, status_code=201, summary="Créer un cours")
def create_class(data: ClassCreate, db: Session = Depends(get_db)):
    """
    Crée un cours ponctuel (date) ou une série récurrente (weekday + recurrence_end_date).
    Les élèves sélectionnés sont inscrits à toutes les occurrences générées.
    """
    try:
        return schedule_service.create_class(db, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=List[ClassResponse], summary="Lister les cours")
def list_classes(
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    teacher_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
):
    """Occurrences datées, triées par date puis heure de début. Les ancres de série sont exclues."""
    return schedule_service.get_classes(db, date_from, date_to, teacher_id)


@router.get("/{class_id}", response_model=ClassResponse, summary="Détail d'un cours")
def get_class(class_id: uuid.UUID, db: Session = Depends(get_db)):
    instance = schedule_service.get_class(db, class_id)
    if instance is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return instance


@router.get("/{class_id}/series", response_model=SeriesResponse, summary="Série d'un cours récurrent")
def get_series(class_id: uuid.UUID, db: Session = Depends(get_db)):
    series = schedule_service.get_series(db, class_id)
    if series is None:
        raise HTTPException(status_code=404, detail="Série introuvable.")
    return series


@router.put("/{class_id}", response_model=ClassEditResult, summary="Modifier un cours")
def update_class(class_id: uuid.UUID, data: ClassUpdate, db: Session = Depends(get_db)):
    """
    Modifie le cours selon la portée (single, future, all).
    La portée est obligatoire pour un cours récurrent.
    """
    try:
        result = schedule_service.update_class(db, class_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return result


@router.delete("/{class_id}", response_model=ClassDeleteResult, summary="Supprimer un cours")
def delete_class(
    class_id: uuid.UUID,
    scope: Optional[ModificationScope] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Supprime le cours selon la portée. Obligatoire pour un cours récurrent.
    Inscriptions et présences des occurrences supprimées sont supprimées avec elles.
    """
    try:
        result = schedule_service.delete_class(db, class_id, scope)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return result


# --- Roster ---

@router.get("/{class_id}/students", response_model=RosterResponse, summary="Roster du cours")
def get_roster(class_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        student_ids = enrollment_service.get_roster(db, class_id)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return RosterResponse(class_id=class_id, student_ids=student_ids)


@router.put("/{class_id}/students", response_model=RosterResult, summary="Réconcilier le roster")
def update_roster(class_id: uuid.UUID, data: RosterUpdate, db: Session = Depends(get_db)):
    """
    Aligne le roster sur la liste fournie.
    Un élève ayant une présence enregistrée n'est jamais retiré : il apparaît dans `conflicts`.
    """
    try:
        return enrollment_service.reconcile_roster(db, class_id, data.student_ids)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Présences ---

@router.get("/{class_id}/attendance", response_model=AttendanceSheet, summary="Feuille de présence")
def get_attendance(class_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return attendance_service.get_attendance_sheet(db, class_id)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{class_id}/attendance", response_model=AttendanceSaveResult, summary="Enregistrer les présences")
def save_attendance(class_id: uuid.UUID, data: AttendanceSaveRequest, db: Session = Depends(get_db)):
    """Remplace toutes les présences de l'occurrence. Les élèves non soumis restent non marqués."""
    try:
        return attendance_service.save_attendance(db, class_id, data)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Drop-in ---

@router.get("/{class_id}/availability", response_model=AvailabilityResponse, summary="Places disponibles")
def get_availability(class_id: uuid.UUID, db: Session = Depends(get_db)):
    availability = capacity_service.get_availability(db, class_id)
    if availability is None:
        raise HTTPException(status_code=404, detail="Cours introuvable.")
    return availability
