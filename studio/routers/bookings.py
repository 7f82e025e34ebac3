"""
Router des réservations drop-in. Le paiement est géré par un service externe.
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from studio.database import get_db
from studio.exceptions import CapacityExceededError, ClassNotFoundError
from studio.schemas.booking import BookingCreate, BookingResult
from studio.services import booking_service

router = APIRouter(prefix="/api/v1/classes", tags=["Réservations drop-in"])


@router.get("/{class_id}/bookings", response_model=List[uuid.UUID], summary="Réservations actives")
def list_bookings(class_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return booking_service.get_active_bookings(db, class_id)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{class_id}/bookings", response_model=BookingResult, summary="Réserver une place")
def book_drop_in(class_id: uuid.UUID, data: BookingCreate, db: Session = Depends(get_db)):
    """
    Réserve une place pour l'élève. Une réservation existante est renvoyée
    avec duplicate=true sans consommer de place. 409 si le cours est complet.
    """
    try:
        return booking_service.book_drop_in(db, class_id, data)
    except ClassNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CapacityExceededError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{class_id}/bookings/{student_id}", status_code=204, summary="Annuler une réservation")
def cancel_booking(class_id: uuid.UUID, student_id: uuid.UUID, db: Session = Depends(get_db)):
    success = booking_service.cancel_booking(db, class_id, student_id)
    if not success:
        raise HTTPException(status_code=404, detail="Réservation introuvable.")
