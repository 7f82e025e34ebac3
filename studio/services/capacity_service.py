"""
Suivi des places des cours drop-in.

Invariant : capacity IS NULL OR booked_count <= capacity.
L'incrément est une mise à jour conditionnelle atomique
(UPDATE … WHERE booked_count < capacity) : deux réservations concurrentes
sur la dernière place ne peuvent pas réussir toutes les deux.
"""

import uuid
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from studio.exceptions import CapacityExceededError, ClassNotFoundError, ScheduleValidationError
from studio.models.class_instance import ClassInstance
from studio.schemas.booking import AvailabilityResponse

logger = logging.getLogger(__name__)


def spots_remaining(instance: ClassInstance) -> Optional[int]:
    """Places restantes, ou None si le cours n'est pas un drop-in à capacité fixée."""
    if not instance.is_drop_in or instance.capacity is None:
        return None
    return max(0, instance.capacity - (instance.booked_count or 0))


def get_availability(db: Session, class_id: uuid.UUID) -> Optional[AvailabilityResponse]:
    instance = db.get(ClassInstance, class_id)
    if instance is None:
        return None
    return AvailabilityResponse(
        class_id=instance.id,
        is_drop_in=instance.is_drop_in,
        capacity=instance.capacity,
        booked_count=instance.booked_count or 0,
        spots_remaining=spots_remaining(instance),
    )


def reserve_spot(db: Session, class_id: uuid.UUID) -> int:
    """
    Consomme une place (booked_count + 1) si et seulement si booked_count < capacity.
    Ne commit pas : l'appelant inclut la réservation dans sa transaction.
    Retourne le nombre de places restantes après l'incrément.

    Lève ClassNotFoundError, ScheduleValidationError (pas un drop-in)
    ou CapacityExceededError (complet).
    """
    result = db.execute(
        update(ClassInstance)
        .where(
            ClassInstance.id == class_id,
            ClassInstance.is_drop_in.is_(True),
            ClassInstance.capacity.isnot(None),
            ClassInstance.booked_count < ClassInstance.capacity,
        )
        .values(booked_count=ClassInstance.booked_count + 1)
        .execution_options(synchronize_session=False)
    )

    instance = db.get(ClassInstance, class_id)
    if instance is None:
        raise ClassNotFoundError("Cours introuvable.")
    db.refresh(instance)

    if result.rowcount == 0:
        if not instance.is_drop_in or instance.capacity is None:
            raise ScheduleValidationError("Ce cours n'accepte pas de réservation drop-in.")
        raise CapacityExceededError("Ce cours est complet.")

    remaining = spots_remaining(instance)
    logger.debug("Place réservée sur %s : %s restante(s)", class_id, remaining)
    return remaining


def release_spot(db: Session, class_id: uuid.UUID) -> bool:
    """Libère une place (jamais en dessous de 0). Ne commit pas."""
    result = db.execute(
        update(ClassInstance)
        .where(ClassInstance.id == class_id, ClassInstance.booked_count > 0)
        .values(booked_count=ClassInstance.booked_count - 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
