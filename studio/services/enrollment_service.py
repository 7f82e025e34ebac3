"""
Réconciliation du roster d'une occurrence de cours.

Le roster souhaité (liste complète d'élèves) est comparé au roster enregistré :
- to_add    = souhaités − actuels  → INSERT … ON CONFLICT DO NOTHING
- to_remove = actuels − souhaités  → DELETE, sauf si une présence existe pour
  l'élève sur cette occurrence (verrou de présence)

Un retrait verrouillé n'interrompt pas l'opération : l'élève reste inscrit et
un RosterConflict est retourné. Ajouter un élève déjà inscrit ou retirer un
élève absent du roster ne produit ni écriture ni erreur.
"""

import uuid
import logging
from typing import Iterable, List, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio.exceptions import ClassNotFoundError, ScheduleValidationError, StorageError
from studio.models.attendance import AttendanceRecord, InstanceEnrollment
from studio.models.class_instance import STATUS_SERIES, ClassInstance
from studio.models.enrollment import Enrollment
from studio.models.student import Student
from studio.schemas.enrollment import RosterConflict, RosterResult
from studio.services import notification_service
from studio.services.db_utils import insert_ignore
from studio.services.notification_service import ClassEvent, EventKind

logger = logging.getLogger(__name__)

LOCK_REASON = "attendance_recorded"


def get_roster(db: Session, class_id: uuid.UUID) -> List[uuid.UUID]:
    """Élèves inscrits au cours (roster de classe), ou ClassNotFoundError."""
    if db.get(ClassInstance, class_id) is None:
        raise ClassNotFoundError("Cours introuvable.")
    return _current_roster(db, class_id)


def reconcile_roster(
    db: Session,
    class_id: uuid.UUID,
    desired_ids: Iterable[uuid.UUID],
    commit: bool = True,
) -> RosterResult:
    """
    Aligne le roster de l'occurrence sur desired_ids.

    Avec commit=False, l'appelant (ex : modification d'un cours) inclut la
    réconciliation dans sa propre transaction et publie les événements lui-même
    via roster_events().
    """
    instance = db.get(ClassInstance, class_id)
    if instance is None:
        raise ClassNotFoundError("Cours introuvable.")
    if instance.status == STATUS_SERIES:
        raise ScheduleValidationError(
            "La définition d'une série n'a pas de roster : choisissez une occurrence datée."
        )

    desired = list(dict.fromkeys(desired_ids))
    current = set(_current_roster(db, class_id))

    to_add = [sid for sid in desired if sid not in current]
    if to_add:
        known = set(db.execute(select(Student.id).where(Student.id.in_(to_add))).scalars().all())
        unknown = [str(sid) for sid in to_add if sid not in known]
        if unknown:
            raise ScheduleValidationError(f"Élève(s) introuvable(s) : {', '.join(unknown)}")
    to_remove = current - set(desired)

    locked = locked_students(db, class_id, to_remove)
    removable = to_remove - locked

    try:
        added_count = insert_ignore(db, Enrollment, [
            {"class_instance_id": class_id, "student_id": sid} for sid in to_add
        ])
        removed = remove_unlocked(db, class_id, removable)
        if commit:
            db.commit()
    except SQLAlchemyError as exc:
        if not commit:
            raise
        db.rollback()
        raise StorageError(f"Échec de l'enregistrement du roster : {exc}") from exc

    if added_count < len(to_add):
        logger.debug(
            "Cours %s : %d ajout(s) déjà présents (éditeur concurrent)", class_id, len(to_add) - added_count
        )

    conflicts = [RosterConflict(student_id=sid, reason=LOCK_REASON) for sid in sorted(locked, key=str)]
    if conflicts:
        logger.warning(
            "Cours %s : %d retrait(s) refusé(s), présences déjà saisies", class_id, len(conflicts)
        )

    result = RosterResult(
        class_id=class_id,
        added=to_add,
        removed=removed,
        conflicts=conflicts,
        roster=_current_roster(db, class_id),
    )

    logger.info(
        "Roster cours %s : +%d, -%d, %d verrouillé(s)",
        class_id, len(result.added), len(result.removed), len(conflicts),
    )

    if commit:
        notification_service.publish(db, roster_events(db, instance, result))
    return result


def locked_students(db: Session, class_id: uuid.UUID, student_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
    """Élèves ayant une présence enregistrée sur cette occurrence."""
    student_ids = list(student_ids)
    if not student_ids:
        return set()
    return set(db.execute(
        select(InstanceEnrollment.student_id)
        .join(AttendanceRecord, AttendanceRecord.instance_enrollment_id == InstanceEnrollment.id)
        .where(
            InstanceEnrollment.class_instance_id == class_id,
            InstanceEnrollment.student_id.in_(student_ids),
        )
    ).scalars().all())


def remove_unlocked(db: Session, class_id: uuid.UUID, student_ids: Iterable[uuid.UUID]) -> List[uuid.UUID]:
    """
    Retire les élèves sans présence enregistrée.
    Le verrou est revérifié dans le DELETE lui-même : une présence saisie entre
    la lecture et l'écriture protège toujours l'inscription.
    """
    student_ids = list(student_ids)
    if not student_ids:
        return []

    has_attendance = (
        select(InstanceEnrollment.id)
        .join(AttendanceRecord, AttendanceRecord.instance_enrollment_id == InstanceEnrollment.id)
        .where(
            InstanceEnrollment.class_instance_id == Enrollment.class_instance_id,
            InstanceEnrollment.student_id == Enrollment.student_id,
        )
        .correlate(Enrollment)
        .exists()
    )
    db.execute(
        delete(Enrollment)
        .where(
            Enrollment.class_instance_id == class_id,
            Enrollment.student_id.in_(student_ids),
            ~has_attendance,
        )
        .execution_options(synchronize_session=False)
    )

    # La photographie d'occurrence sans présence n'a plus lieu d'être
    db.execute(
        delete(InstanceEnrollment)
        .where(
            InstanceEnrollment.class_instance_id == class_id,
            InstanceEnrollment.student_id.in_(student_ids),
            ~select(AttendanceRecord.id)
            .where(AttendanceRecord.instance_enrollment_id == InstanceEnrollment.id)
            .correlate(InstanceEnrollment)
            .exists(),
        )
        .execution_options(synchronize_session=False)
    )

    remaining = set(_current_roster(db, class_id))
    return [sid for sid in student_ids if sid not in remaining]


def roster_events(db: Session, instance: ClassInstance, result: RosterResult) -> List[ClassEvent]:
    """Événements student_added / student_removed pour une réconciliation."""
    changed = list(result.added) + list(result.removed)
    if not changed:
        return []

    names = dict(db.execute(
        select(Student.id, Student.name).where(Student.id.in_(changed))
    ).all())

    events = []
    for kind, ids in ((EventKind.STUDENT_ADDED, result.added), (EventKind.STUDENT_REMOVED, result.removed)):
        for sid in ids:
            events.append(ClassEvent(
                kind=kind,
                class_id=instance.id,
                studio_id=instance.studio_id,
                details={
                    "class_name": instance.name,
                    "teacher_id": instance.teacher_id,
                    "student_id": sid,
                    "student_name": names.get(sid, "Un élève"),
                },
            ))
    return events


def _current_roster(db: Session, class_id: uuid.UUID) -> List[uuid.UUID]:
    return list(db.execute(
        select(Enrollment.student_id)
        .where(Enrollment.class_instance_id == class_id)
        .order_by(Enrollment.enrolled_at, Enrollment.student_id)
    ).scalars().all())
