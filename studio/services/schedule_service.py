"""
Service métier de planification des cours (création, modification et suppression par portée).

Modèle matérialisé : une série récurrente = une ancre (status SERIES) + une ligne
par occurrence datée pointant vers l'ancre via parent_reference.

Toute écriture multi-lignes (portée future / all) est faite dans une seule
transaction : soit toutes les lignes de la sélection sont modifiées, soit
aucune (StorageError, l'appelant relance l'opération complète).
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio.exceptions import ScheduleValidationError, ScopeRequiredError, StorageError
from studio.models.class_instance import STATUS_SCHEDULED, STATUS_SERIES, ClassInstance
from studio.models.enrollment import Enrollment
from studio.models.location import Location
from studio.models.student import Student
from studio.models.user import User
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
from studio.schemas.enrollment import RosterResult
from studio.services import enrollment_service, notification_service, recurrence, scope_resolver
from studio.services.capacity_service import spots_remaining
from studio.services.notification_service import ClassEvent, EventKind

logger = logging.getLogger(__name__)

# Champs qu'une modification peut propager à toute la sélection
EDITABLE_FIELDS = (
    "name", "teacher_id", "location_id", "start_time", "end_time",
    "is_drop_in", "capacity", "drop_in_price", "notes",
)


@dataclass
class Series:
    """Agrégat d'une série récurrente : l'ancre et ses occurrences datées."""
    anchor: ClassInstance
    _instances: List[ClassInstance]

    def instances(self) -> List[ClassInstance]:
        return list(self._instances)


# ============================================================
# Création
# ============================================================

def create_class(db: Session, data: ClassCreate, today: Optional[date] = None) -> ClassCreateResult:
    """
    Crée un cours ponctuel ou une série récurrente.

    Étapes :
    1. Validation des champs obligatoires (ScheduleValidationError, aucune écriture)
    2. Cours ponctuel : une ligne avec date == end_date
       Cours récurrent : génération des dates, insertion de l'ancre puis des occurrences en lot
    3. Inscription des élèves sélectionnés sur chaque occurrence créée
    4. Commit, puis notifications (class_assigned, student_added)
    """
    _validate_create(db, data)

    fields = {
        "studio_id": data.studio_id,
        "name": data.name,
        "teacher_id": data.teacher_id,
        "location_id": data.location_id,
        "start_time": data.start_time,
        "end_time": data.end_time,
        "is_drop_in": data.is_drop_in,
        "capacity": data.capacity if data.is_drop_in else None,
        "drop_in_price": data.drop_in_price if data.is_drop_in else None,
        "notes": data.notes,
        "booked_count": 0,
    }

    series_id: Optional[uuid.UUID] = None
    anchor_rows: List[dict] = []
    if not data.is_recurring:
        dates = [data.date]
        rows = [{
            **fields,
            "id": uuid.uuid4(),
            "parent_reference": None,
            "date": data.date,
            "end_date": data.date,
            "is_recurring": False,
            "status": STATUS_SCHEDULED,
        }]
    else:
        dates = recurrence.weekly_dates(data.weekday, data.recurrence_end_date, today or date.today())
        if not dates:
            raise ScheduleValidationError(
                "Aucune occurrence entre aujourd'hui et la date de fin de récurrence."
            )
        series_id = uuid.uuid4()
        anchor_rows = [{
            **fields,
            "id": series_id,
            "parent_reference": None,
            "date": dates[0],
            "end_date": data.recurrence_end_date,
            "is_recurring": True,
            "status": STATUS_SERIES,
        }]
        rows = [{
            **fields,
            "id": uuid.uuid4(),
            "parent_reference": series_id,
            "date": class_date,
            "end_date": class_date,
            "is_recurring": True,
            "status": STATUS_SCHEDULED,
        } for class_date in dates]

    instance_ids = [row["id"] for row in rows]
    student_ids = list(dict.fromkeys(data.student_ids))

    try:
        # L'ancre précède ses occurrences (clé étrangère parent_reference)
        db.bulk_insert_mappings(ClassInstance, anchor_rows + rows)
        if student_ids:
            db.bulk_insert_mappings(Enrollment, [
                {"class_instance_id": iid, "student_id": sid}
                for iid in instance_ids
                for sid in student_ids
            ])
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de la création du cours : {exc}") from exc

    logger.info(
        "Cours créé : %s (%s) : %d occurrence(s), %d élève(s) inscrit(s)",
        data.name, series_id or instance_ids[0], len(instance_ids), len(student_ids),
    )

    first_id = instance_ids[0]
    events = [ClassEvent(
        kind=EventKind.CLASS_ASSIGNED,
        class_id=first_id,
        studio_id=data.studio_id,
        details={
            "class_name": data.name,
            "teacher_id": data.teacher_id,
            "is_recurring": data.is_recurring,
            "weekday": data.weekday if data.is_recurring else None,
            "date": dates[0].isoformat(),
            "end_date": data.recurrence_end_date.isoformat() if data.is_recurring else None,
            "start_time": data.start_time.isoformat(),
            "end_time": data.end_time.isoformat(),
            "location_id": data.location_id,
        },
    )]
    if student_ids:
        instance = db.get(ClassInstance, first_id)
        events.extend(enrollment_service.roster_events(db, instance, _added_only(first_id, student_ids)))
    notification_service.publish(db, events)

    return ClassCreateResult(
        series_id=series_id,
        instance_ids=instance_ids,
        dates=dates,
        enrolled_students=len(student_ids),
    )


def _validate_create(db: Session, data: ClassCreate) -> None:
    required = (data.teacher_id, data.location_id, data.start_time, data.end_time)
    if not data.name or any(value is None for value in required):
        raise ScheduleValidationError(
            "Veuillez renseigner tous les champs obligatoires (nom, enseignant, salle, horaires)."
        )
    if data.is_recurring:
        if data.weekday is None:
            raise ScheduleValidationError("Le jour de la semaine est obligatoire pour un cours récurrent.")
        if data.recurrence_end_date is None:
            raise ScheduleValidationError("La date de fin est obligatoire pour un cours récurrent.")
    elif data.date is None:
        raise ScheduleValidationError("La date est obligatoire pour un cours ponctuel.")

    _validate_drop_in(data.is_drop_in, data.capacity, data.drop_in_price)

    if db.get(User, data.teacher_id) is None:
        raise ScheduleValidationError("Enseignant introuvable.")
    if db.get(Location, data.location_id) is None:
        raise ScheduleValidationError("Salle introuvable.")
    if data.student_ids:
        known = set(db.execute(select(Student.id).where(Student.id.in_(data.student_ids))).scalars().all())
        unknown = [str(sid) for sid in dict.fromkeys(data.student_ids) if sid not in known]
        if unknown:
            raise ScheduleValidationError(f"Élève(s) introuvable(s) : {', '.join(unknown)}")


def _validate_drop_in(is_drop_in, capacity, drop_in_price) -> None:
    if not is_drop_in:
        return
    if capacity is None or capacity <= 0:
        raise ScheduleValidationError("Un cours drop-in doit avoir une capacité strictement positive.")
    if drop_in_price is None or drop_in_price < 0:
        raise ScheduleValidationError("Un cours drop-in doit avoir un prix positif ou nul.")


# ============================================================
# Lecture
# ============================================================

def get_classes(
    db: Session,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    teacher_id: Optional[uuid.UUID] = None,
) -> List[ClassResponse]:
    """Occurrences datées (ancres exclues), triées par date puis heure de début."""
    query = select(ClassInstance).where(ClassInstance.status != STATUS_SERIES)
    if date_from is not None:
        query = query.where(ClassInstance.date >= date_from)
    if date_to is not None:
        query = query.where(ClassInstance.date <= date_to)
    if teacher_id is not None:
        query = query.where(ClassInstance.teacher_id == teacher_id)

    instances = db.execute(
        query.order_by(ClassInstance.date, ClassInstance.start_time)
    ).scalars().all()
    return [_to_response(db, i) for i in instances]


def get_class(db: Session, class_id: uuid.UUID) -> Optional[ClassResponse]:
    """Retourne un cours par son ID, ou None s'il n'existe pas."""
    instance = db.get(ClassInstance, class_id)
    if instance is None:
        return None
    return _to_response(db, instance)


def load_series(db: Session, class_id: uuid.UUID) -> Optional[Series]:
    """Charge la série d'une occurrence (ou de l'ancre). None si introuvable ou non récurrent."""
    instance = db.get(ClassInstance, class_id)
    if instance is None or not instance.is_recurring:
        return None

    anchor = instance if instance.is_anchor else db.get(ClassInstance, instance.parent_reference)
    instances = db.execute(
        select(ClassInstance)
        .where(ClassInstance.parent_reference == anchor.id)
        .order_by(ClassInstance.date)
    ).scalars().all()
    return Series(anchor=anchor, _instances=list(instances))


def get_series(db: Session, class_id: uuid.UUID) -> Optional[SeriesResponse]:
    series = load_series(db, class_id)
    if series is None:
        return None
    return SeriesResponse(
        anchor=_to_response(db, series.anchor),
        instances=[_to_response(db, i) for i in series.instances()],
    )


# ============================================================
# Modification par portée
# ============================================================

def update_class(db: Session, class_id: uuid.UUID, data: ClassUpdate) -> Optional[ClassEditResult]:
    """
    Applique la même mise à jour à toutes les lignes de la sélection.

    - cours ponctuel : la ligne elle-même, sans portée
    - cours récurrent : portée obligatoire (ScopeRequiredError), résolue par scope_resolver
    - roster : réconcilié seulement en portée single ou pour un cours ponctuel

    Les lignes sélectionnées sont lues et verrouillées (FOR UPDATE) avant toute
    écriture : la sélection ne bouge pas si une autre édition modifie une date.
    Retourne None si le cours est introuvable.
    """
    target = db.get(ClassInstance, class_id)
    if target is None:
        return None

    selection = _selection_for(target, data.scope)
    payload = _update_payload(target, data)
    if payload.get("teacher_id") and db.get(User, payload["teacher_id"]) is None:
        raise ScheduleValidationError("Enseignant introuvable.")
    if payload.get("location_id") and db.get(Location, payload["location_id"]) is None:
        raise ScheduleValidationError("Salle introuvable.")

    try:
        groups = _lock_selection(db, selection)
        rows = [row for group in groups for row in group]

        if "capacity" in payload or "is_drop_in" in payload:
            _check_capacity_change(rows, payload)

        updated_ids: List[uuid.UUID] = []
        if payload:
            # Une écriture par critère : occurrences, puis ancre (clé différente)
            for group in groups:
                ids = [row.id for row in group]
                if not ids:
                    continue
                db.execute(
                    update(ClassInstance)
                    .where(ClassInstance.id.in_(ids))
                    .values(**payload)
                    .execution_options(synchronize_session="fetch")
                )
                updated_ids.extend(ids)

        roster = None
        apply_roster = not target.is_recurring or selection.scope is ModificationScope.SINGLE
        if data.student_ids is not None and apply_roster:
            roster = enrollment_service.reconcile_roster(db, target.id, data.student_ids, commit=False)

        db.commit()
    except ScheduleValidationError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de la modification du cours : {exc}") from exc

    logger.info(
        "Cours %s modifié (portée %s) : %d ligne(s)",
        class_id, selection.scope.value if selection.scope else "directe", len(updated_ids),
    )

    db.refresh(target)
    events = []
    if payload:
        events.append(ClassEvent(
            kind=EventKind.CLASS_SCHEDULE,
            class_id=target.id,
            studio_id=target.studio_id,
            details={
                "class_name": target.name,
                "teacher_id": target.teacher_id,
                "scope": selection.scope.value if selection.scope else None,
                "updated_count": len(updated_ids),
                "changes": sorted(payload),
            },
        ))
        if "teacher_id" in payload:
            events.append(ClassEvent(
                kind=EventKind.CLASS_ASSIGNED,
                class_id=target.id,
                studio_id=target.studio_id,
                details={"class_name": target.name, "teacher_id": payload["teacher_id"]},
            ))
    if roster is not None:
        events.extend(enrollment_service.roster_events(db, target, roster))
    notification_service.publish(db, events)

    return ClassEditResult(
        scope=selection.scope,
        updated_ids=updated_ids,
        updated_count=len(updated_ids),
        roster=roster,
    )


def _update_payload(target: ClassInstance, data: ClassUpdate) -> dict:
    payload = data.model_dump(exclude_unset=True, include=set(EDITABLE_FIELDS))
    payload = {k: v for k, v in payload.items() if v is not None or k in ("capacity", "drop_in_price", "notes")}

    is_drop_in = payload.get("is_drop_in", target.is_drop_in)
    if not is_drop_in:
        if "is_drop_in" in payload or "capacity" in payload or "drop_in_price" in payload:
            payload["capacity"] = None
            payload["drop_in_price"] = None
    else:
        _validate_drop_in(
            True,
            payload.get("capacity", target.capacity),
            payload.get("drop_in_price", target.drop_in_price),
        )
    return payload


def _check_capacity_change(rows: List[ClassInstance], payload: dict) -> None:
    """Refuse une capacité inférieure au nombre de places déjà réservées."""
    capacity = payload.get("capacity")
    if capacity is None:
        return
    overbooked = [row for row in rows if (row.booked_count or 0) > capacity]
    if overbooked:
        raise ScheduleValidationError(
            f"Capacité {capacity} inférieure aux réservations existantes "
            f"({max(r.booked_count for r in overbooked)}) sur {len(overbooked)} occurrence(s)."
        )


# ============================================================
# Suppression par portée
# ============================================================

def delete_class(
    db: Session,
    class_id: uuid.UUID,
    scope: Optional[ModificationScope] = None,
    today: Optional[date] = None,
) -> Optional[ClassDeleteResult]:
    """
    Supprime les lignes de la sélection (occurrences puis ancre).
    Les inscriptions, photographies et présences des lignes supprimées
    disparaissent avec elles (ON DELETE CASCADE) : aucune présence orpheline.

    Un cours récurrent exige une portée (ScopeRequiredError).
    Retourne None si le cours est introuvable.
    """
    target = db.get(ClassInstance, class_id)
    if target is None:
        return None

    selection = _selection_for(target, scope)
    today = today or date.today()

    try:
        groups = _lock_selection(db, selection)
        dated = [row for group in groups for row in group if not row.is_anchor]

        # Élèves des occurrences à venir, relevés avant la cascade (destinataires des annulations)
        upcoming = [row for row in dated if row.date >= today]
        students_by_class = _students_by_class(db, [row.id for row in upcoming])
        cancelled = [
            (row.id, row.name, row.date, row.studio_id, students_by_class.get(row.id, []))
            for row in upcoming
        ]

        deleted_ids: List[uuid.UUID] = []
        for group in groups:
            ids = [row.id for row in group]
            if not ids:
                continue
            db.execute(
                delete(ClassInstance)
                .where(ClassInstance.id.in_(ids))
                .execution_options(synchronize_session="fetch")
            )
            deleted_ids.extend(ids)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Échec de la suppression du cours : {exc}") from exc

    logger.info(
        "Cours %s supprimé (portée %s) : %d ligne(s)",
        class_id, selection.scope.value if selection.scope else "directe", len(deleted_ids),
    )

    notification_service.publish(db, [
        ClassEvent(
            kind=EventKind.CLASS_CANCELLATION,
            class_id=cid,
            studio_id=studio_id,
            details={"class_name": name, "date": class_date.isoformat(), "student_ids": student_ids},
        )
        for cid, name, class_date, studio_id, student_ids in cancelled
        if student_ids
    ])

    return ClassDeleteResult(scope=selection.scope, deleted_ids=deleted_ids, deleted_count=len(deleted_ids))


# ============================================================
# Helpers
# ============================================================

def _selection_for(target: ClassInstance, scope: Optional[ModificationScope]) -> scope_resolver.Selection:
    if not target.is_recurring:
        return scope_resolver.single(target)
    if scope is None:
        raise ScopeRequiredError(
            "Ce cours est récurrent : précisez la portée (single, future ou all)."
        )
    return scope_resolver.resolve(scope, target)


def _lock_selection(db: Session, selection: scope_resolver.Selection) -> List[List[ClassInstance]]:
    """Lit (et verrouille) les lignes de chaque critère, dans l'ordre des écritures."""
    return [
        list(db.execute(
            select(ClassInstance)
            .where(criterion)
            .order_by(ClassInstance.date)
            .with_for_update()
        ).scalars().all())
        for criterion in selection.criteria()
    ]


def _students_by_class(db: Session, class_ids: List[uuid.UUID]) -> dict:
    if not class_ids:
        return {}
    result: dict = {}
    for cid, sid in db.execute(
        select(Enrollment.class_instance_id, Enrollment.student_id)
        .where(Enrollment.class_instance_id.in_(class_ids))
    ).all():
        result.setdefault(cid, []).append(sid)
    return result


def _added_only(class_id: uuid.UUID, student_ids: List[uuid.UUID]):
    return RosterResult(class_id=class_id, added=student_ids, removed=[], roster=student_ids)


def _to_response(db: Session, instance: ClassInstance) -> ClassResponse:
    """Construit le schéma de réponse avec le nombre d'élèves et les places restantes."""
    nb_students = db.execute(
        select(func.count())
        .select_from(Enrollment)
        .where(Enrollment.class_instance_id == instance.id)
    ).scalar() or 0

    return ClassResponse(
        id=instance.id,
        studio_id=instance.studio_id,
        parent_reference=instance.parent_reference,
        name=instance.name,
        date=instance.date,
        end_date=instance.end_date,
        start_time=instance.start_time,
        end_time=instance.end_time,
        teacher_id=instance.teacher_id,
        location_id=instance.location_id,
        is_recurring=instance.is_recurring,
        is_drop_in=instance.is_drop_in,
        capacity=instance.capacity,
        drop_in_price=instance.drop_in_price,
        booked_count=instance.booked_count or 0,
        spots_remaining=spots_remaining(instance),
        nb_students=nb_students,
        status=instance.status,
        notes=instance.notes,
        created_at=instance.created_at,
        updated_at=instance.updated_at,
    )
