"""
Réservations drop-in (hors paiement, traité par un service externe).

Réservation :
1. INSERT de la réservation, ignoré si l'élève est déjà inscrit (doublon = succès idempotent)
2. Consommation atomique d'une place (CapacityExceededError → rollback complet)
3. Ajout de l'élève au roster du cours (pour la feuille de présence)
4. Commit, puis notifications : student_added, class_capacity si le cours devient complet
"""

import uuid
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio.exceptions import ClassNotFoundError, ScheduleValidationError, StorageError
from studio.models.booking import DropInBooking
from studio.models.class_instance import STATUS_SERIES, ClassInstance
from studio.models.enrollment import Enrollment
from studio.models.student import Student
from studio.schemas.booking import BookingCreate, BookingResult
from studio.services import capacity_service, enrollment_service, notification_service
from studio.services.db_utils import insert_ignore
from studio.services.notification_service import ClassEvent, EventKind

logger = logging.getLogger(__name__)


def book_drop_in(db: Session, class_id: uuid.UUID, data: BookingCreate) -> BookingResult:
    instance = db.get(ClassInstance, class_id)
    if instance is None:
        raise ClassNotFoundError("Cours introuvable.")
    if instance.status == STATUS_SERIES:
        raise ScheduleValidationError(
            "La définition d'une série ne se réserve pas : choisissez une occurrence datée."
        )
    if not instance.is_drop_in:
        raise ScheduleValidationError("Ce cours n'accepte pas de réservation drop-in.")
    student = db.get(Student, data.student_id)
    if student is None:
        raise ScheduleValidationError("Élève introuvable.")

    try:
        created = insert_ignore(db, DropInBooking, [{
            "id": uuid.uuid4(),
            "class_instance_id": class_id,
            "student_id": data.student_id,
            "parent_id": data.parent_id,
            "status": "ACTIVE",
        }])
        if not created:
            # Réservation annulée auparavant : on la réactive, sinon c'est un doublon
            created = db.execute(
                update(DropInBooking)
                .where(
                    DropInBooking.class_instance_id == class_id,
                    DropInBooking.student_id == data.student_id,
                    DropInBooking.status == "CANCELLED",
                )
                .values(status="ACTIVE", cancelled_at=None, parent_id=data.parent_id)
                .execution_options(synchronize_session=False)
            ).rowcount

        if not created:
            db.rollback()
            logger.debug("Réservation déjà existante ignorée : cours %s, élève %s", class_id, data.student_id)
            db.refresh(instance)
            return BookingResult(
                class_id=class_id,
                student_id=data.student_id,
                booked=False,
                duplicate=True,
                booked_count=instance.booked_count or 0,
                spots_remaining=capacity_service.spots_remaining(instance),
            )

        remaining = capacity_service.reserve_spot(db, class_id)
        insert_ignore(db, Enrollment, [{
            "class_instance_id": class_id,
            "student_id": data.student_id,
            "is_drop_in": True,
        }])
        db.commit()
    except ValueError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de la réservation : {exc}") from exc

    db.refresh(instance)
    logger.info(
        "Réservation drop-in : cours %s, élève %s (%d/%d)",
        class_id, data.student_id, instance.booked_count, instance.capacity,
    )

    details = {"class_name": instance.name, "date": instance.date.isoformat(), "teacher_id": instance.teacher_id}
    events = [ClassEvent(
        kind=EventKind.STUDENT_ADDED,
        class_id=class_id,
        studio_id=instance.studio_id,
        details={**details, "student_id": student.id, "student_name": student.name},
    )]
    if remaining == 0:
        events.append(ClassEvent(
            kind=EventKind.CLASS_CAPACITY,
            class_id=class_id,
            studio_id=instance.studio_id,
            details={**details, "capacity": instance.capacity},
        ))
    notification_service.publish(db, events)

    return BookingResult(
        class_id=class_id,
        student_id=data.student_id,
        booked=True,
        booked_count=instance.booked_count,
        spots_remaining=remaining,
    )


def cancel_booking(db: Session, class_id: uuid.UUID, student_id: uuid.UUID) -> bool:
    """
    Annule une réservation active et libère la place.
    L'élève inscrit via la réservation est retiré du roster, sauf si une
    présence a déjà été saisie.
    Retourne False si aucune réservation active n'existe.
    """
    try:
        cancelled = db.execute(
            update(DropInBooking)
            .where(
                DropInBooking.class_instance_id == class_id,
                DropInBooking.student_id == student_id,
                DropInBooking.status == "ACTIVE",
            )
            .values(status="CANCELLED", cancelled_at=datetime.now(timezone.utc).replace(tzinfo=None))
            .execution_options(synchronize_session=False)
        ).rowcount
        if not cancelled:
            db.rollback()
            return False

        capacity_service.release_spot(db, class_id)
        enrollment = db.get(Enrollment, (class_id, student_id))
        if enrollment is not None and enrollment.is_drop_in:
            enrollment_service.remove_unlocked(db, class_id, [student_id])
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de l'annulation de la réservation : {exc}") from exc

    logger.info("Réservation drop-in annulée : cours %s, élève %s", class_id, student_id)
    return True


def get_active_bookings(db: Session, class_id: uuid.UUID) -> list:
    """Élèves ayant une réservation drop-in active, par ordre de réservation."""
    if db.get(ClassInstance, class_id) is None:
        raise ClassNotFoundError("Cours introuvable.")
    return list(db.execute(
        select(DropInBooking.student_id)
        .where(DropInBooking.class_instance_id == class_id, DropInBooking.status == "ACTIVE")
        .order_by(DropInBooking.created_at)
    ).scalars().all())
