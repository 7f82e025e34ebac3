"""
Feuille de présence d'une occurrence datée.

1. ensure_instance_roster : photographie du roster de classe au niveau de
   l'occurrence (InstanceEnrollment), créée à la première consultation puis
   complétée avec les élèves inscrits depuis. Jamais réduite ici.
2. save_attendance : sémantique de remplacement. Toutes les présences de
   l'occurrence sont supprimées puis les statuts soumis sont réinsérés ;
   un élève absent de la saisie reste « non marqué ».
3. list_overdue_attendance / flag_overdue_attendance : occurrences passées
   avec roster mais sans aucune présence (balayage APScheduler).
"""

import uuid
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio.config import settings
from studio.exceptions import ClassNotFoundError, ScheduleValidationError, StorageError
from studio.models.attendance import AttendanceRecord, InstanceEnrollment
from studio.models.class_instance import STATUS_SERIES, ClassInstance
from studio.models.enrollment import Enrollment
from studio.models.student import Student
from studio.schemas.attendance import (
    AttendanceEntry,
    AttendanceSaveRequest,
    AttendanceSaveResult,
    AttendanceSheet,
    OverdueAttendance,
)
from studio.services import notification_service
from studio.services.db_utils import insert_ignore
from studio.services.notification_service import ClassEvent, EventKind

logger = logging.getLogger(__name__)


def _get_dated_instance(db: Session, class_id: uuid.UUID) -> ClassInstance:
    instance = db.get(ClassInstance, class_id)
    if instance is None:
        raise ClassNotFoundError("Cours introuvable.")
    if instance.status == STATUS_SERIES:
        raise ScheduleValidationError(
            "La définition d'une série n'a pas de feuille de présence : choisissez une occurrence datée."
        )
    return instance


def ensure_instance_roster(db: Session, instance: ClassInstance) -> int:
    """
    Crée les InstanceEnrollment manquants à partir du roster de classe.
    Ne commit pas. Retourne le nombre de lignes créées.
    """
    class_roster = db.execute(
        select(Enrollment.student_id).where(Enrollment.class_instance_id == instance.id)
    ).scalars().all()
    snapshot = set(db.execute(
        select(InstanceEnrollment.student_id).where(InstanceEnrollment.class_instance_id == instance.id)
    ).scalars().all())

    missing = [sid for sid in class_roster if sid not in snapshot]
    return insert_ignore(db, InstanceEnrollment, [
        {"id": uuid.uuid4(), "class_instance_id": instance.id, "student_id": sid} for sid in missing
    ])


def get_attendance_sheet(db: Session, class_id: uuid.UUID) -> AttendanceSheet:
    instance = _get_dated_instance(db, class_id)

    try:
        created = ensure_instance_roster(db, instance)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de la préparation de la feuille de présence : {exc}") from exc
    if created:
        logger.info("Feuille de présence %s : %d élève(s) ajouté(s) à la photographie", class_id, created)

    rows = db.execute(
        select(InstanceEnrollment, Student, AttendanceRecord)
        .outerjoin(Student, Student.id == InstanceEnrollment.student_id)
        .outerjoin(AttendanceRecord, AttendanceRecord.instance_enrollment_id == InstanceEnrollment.id)
        .where(InstanceEnrollment.class_instance_id == class_id)
        .order_by(Student.name, InstanceEnrollment.student_id)
    ).all()

    entries = []
    for enrollment, student, record in rows:
        entries.append(AttendanceEntry(
            enrollment_id=enrollment.id,
            student_id=enrollment.student_id,
            student_name=student.name if student else None,
            student_email=student.email if student else None,
            parent_id=student.parent_id if student else None,
            detail_available=student is not None,
            status=record.status if record else None,
            notes=record.notes if record else None,
        ))

    return AttendanceSheet(class_id=instance.id, date=instance.date, entries=entries)


def save_attendance(db: Session, class_id: uuid.UUID, data: AttendanceSaveRequest) -> AttendanceSaveResult:
    """
    Remplace l'ensemble des présences de l'occurrence par la saisie soumise.
    Chaque enrollment_id doit appartenir à la photographie de cette occurrence.
    """
    instance = _get_dated_instance(db, class_id)

    snapshot: Dict[uuid.UUID, uuid.UUID] = dict(db.execute(
        select(InstanceEnrollment.id, InstanceEnrollment.student_id)
        .where(InstanceEnrollment.class_instance_id == class_id)
    ).all())

    unknown = [str(r.enrollment_id) for r in data.records if r.enrollment_id not in snapshot]
    if unknown:
        raise ScheduleValidationError(
            f"Inscription(s) inconnue(s) pour ce cours : {', '.join(unknown)}"
        )

    try:
        if snapshot:
            db.execute(
                delete(AttendanceRecord)
                .where(AttendanceRecord.instance_enrollment_id.in_(list(snapshot)))
                .execution_options(synchronize_session=False)
            )
        if data.records:
            db.bulk_insert_mappings(AttendanceRecord, [
                {
                    "id": uuid.uuid4(),
                    "instance_enrollment_id": r.enrollment_id,
                    "status": r.status,
                    "notes": r.notes,
                }
                for r in data.records
            ])
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de l'enregistrement des présences : {exc}") from exc

    result = AttendanceSaveResult(
        class_id=class_id,
        saved=len(data.records),
        unmarked=len(snapshot) - len(data.records),
    )
    logger.info(
        "Présences enregistrées pour %s (%s) : %d marqué(s), %d non marqué(s)",
        class_id, instance.date, result.saved, result.unmarked,
    )

    absent_ids = [snapshot[r.enrollment_id] for r in data.records if r.status == "unauthorised"]
    if absent_ids:
        notification_service.publish(db, _absence_events(db, instance, absent_ids))
    return result


def consecutive_unauthorised(db: Session, instance: ClassInstance, student_id: uuid.UUID) -> int:
    """
    Nombre d'absences non justifiées consécutives de l'élève dans la série,
    en remontant depuis cette occurrence (incluse).
    """
    if instance.parent_reference is not None:
        same_series = ClassInstance.parent_reference == instance.parent_reference
    else:
        same_series = ClassInstance.id == instance.id

    statuses = db.execute(
        select(AttendanceRecord.status)
        .join(InstanceEnrollment, InstanceEnrollment.id == AttendanceRecord.instance_enrollment_id)
        .join(ClassInstance, ClassInstance.id == InstanceEnrollment.class_instance_id)
        .where(
            InstanceEnrollment.student_id == student_id,
            same_series,
            ClassInstance.date <= instance.date,
        )
        .order_by(ClassInstance.date.desc(), ClassInstance.start_time.desc())
    ).scalars().all()

    count = 0
    for status in statuses:
        if status != "unauthorised":
            break
        count += 1
    return count


def _absence_events(db: Session, instance: ClassInstance, student_ids: List[uuid.UUID]) -> List[ClassEvent]:
    names = dict(db.execute(
        select(Student.id, Student.name).where(Student.id.in_(student_ids))
    ).all())
    threshold = settings.CONSECUTIVE_ABSENCE_THRESHOLD

    events = []
    for sid in student_ids:
        details = {
            "class_name": instance.name,
            "date": instance.date.isoformat(),
            "teacher_id": instance.teacher_id,
            "student_id": sid,
            "student_name": names.get(sid, "Un élève"),
        }
        events.append(ClassEvent(
            kind=EventKind.UNAUTHORIZED_ABSENCE,
            class_id=instance.id,
            studio_id=instance.studio_id,
            details=details,
        ))

        count = consecutive_unauthorised(db, instance, sid)
        if threshold > 0 and count >= threshold:
            logger.warning("Élève %s : %d absences non justifiées consécutives (%s)", sid, count, instance.name)
            events.append(ClassEvent(
                kind=EventKind.STUDENT_CONSECUTIVE_ABSENCE,
                class_id=instance.id,
                studio_id=instance.studio_id,
                details={**details, "absence_count": count},
            ))
    return events


# ============================================================
# Balayage des présences non saisies
# ============================================================

def list_overdue_attendance(db: Session, today: Optional[date] = None) -> List[OverdueAttendance]:
    """
    Occurrences passées (date < today) avec au moins un élève inscrit,
    aucune présence enregistrée et pas encore signalées.
    """
    today = today or date.today()

    roster_size = (
        select(Enrollment.class_instance_id, func.count().label("nb_students"))
        .group_by(Enrollment.class_instance_id)
        .subquery()
    )
    has_attendance = (
        select(InstanceEnrollment.id)
        .join(AttendanceRecord, AttendanceRecord.instance_enrollment_id == InstanceEnrollment.id)
        .where(InstanceEnrollment.class_instance_id == ClassInstance.id)
        .correlate(ClassInstance)
        .exists()
    )

    rows = db.execute(
        select(ClassInstance, roster_size.c.nb_students)
        .join(roster_size, roster_size.c.class_instance_id == ClassInstance.id)
        .where(
            ClassInstance.status != STATUS_SERIES,
            ClassInstance.date < today,
            ClassInstance.attendance_flagged_at.is_(None),
            ~has_attendance,
        )
        .order_by(ClassInstance.date, ClassInstance.start_time)
    ).all()

    return [
        OverdueAttendance(
            class_id=instance.id,
            studio_id=instance.studio_id,
            name=instance.name,
            date=instance.date,
            teacher_id=instance.teacher_id,
            nb_students=nb_students,
        )
        for instance, nb_students in rows
    ]


def flag_overdue_attendance(db: Session, today: Optional[date] = None) -> int:
    """
    Marque les occurrences en retard (attendance_flagged_at) et émet un
    événement attendance_missing pour chacune. Retourne le nombre signalé.
    """
    overdue = list_overdue_attendance(db, today)
    if not overdue:
        return 0

    try:
        db.execute(
            update(ClassInstance)
            .where(ClassInstance.id.in_([o.class_id for o in overdue]))
            .values(attendance_flagged_at=datetime.now(timezone.utc).replace(tzinfo=None))
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec du signalement des présences manquantes : {exc}") from exc

    logger.info("%d occurrence(s) sans présences signalée(s)", len(overdue))

    notification_service.publish(db, [
        ClassEvent(
            kind=EventKind.ATTENDANCE_MISSING,
            class_id=o.class_id,
            studio_id=o.studio_id,
            details={
                "class_name": o.name,
                "date": o.date.isoformat(),
                "teacher_id": o.teacher_id,
                "nb_students": o.nb_students,
            },
        )
        for o in overdue
    ])
    return len(overdue)
