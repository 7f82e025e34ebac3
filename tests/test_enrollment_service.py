"""
Tests de la réconciliation du roster : différence ajouts / retraits,
verrou de présence et idempotence.
"""

import uuid
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from studio.exceptions import ClassNotFoundError, ScheduleValidationError, StorageError
from studio.models.attendance import InstanceEnrollment
from studio.models.enrollment import Enrollment
from studio.models.notification import Notification
from studio.schemas.attendance import AttendanceMark, AttendanceSaveRequest
from studio.schemas.class_instance import ClassCreate
from studio.services import attendance_service, enrollment_service, schedule_service


# --- Helpers ---

def create_class_with(db, class_payload, student_ids):
    result = schedule_service.create_class(
        db, ClassCreate(**class_payload(date=date(2024, 3, 6), student_ids=list(student_ids)))
    )
    return result.instance_ids[0]


def mark(db, class_id, statuses):
    """Enregistre des présences par élève : {student_id: status}."""
    sheet = attendance_service.get_attendance_sheet(db, class_id)
    by_student = {e.student_id: e.enrollment_id for e in sheet.entries}
    attendance_service.save_attendance(db, class_id, AttendanceSaveRequest(records=[
        AttendanceMark(enrollment_id=by_student[sid], status=status) for sid, status in statuses.items()
    ]))


def enrollment_count(db):
    return db.execute(select(func.count()).select_from(Enrollment)).scalar()


# ============================================================
# Cas d'erreur (session mockée)
# ============================================================

def test_reconcile_cours_inexistant():
    db = MagicMock()
    db.get.return_value = None
    with pytest.raises(ClassNotFoundError):
        enrollment_service.reconcile_roster(db, uuid.uuid4(), [])
    db.commit.assert_not_called()


def test_get_roster_cours_inexistant():
    db = MagicMock()
    db.get.return_value = None
    with pytest.raises(ClassNotFoundError):
        enrollment_service.get_roster(db, uuid.uuid4())


def test_locked_students_liste_vide_sans_requete():
    db = MagicMock()
    assert enrollment_service.locked_students(db, uuid.uuid4(), []) == set()
    db.execute.assert_not_called()


# ============================================================
# Réconciliation (SQLite)
# ============================================================

def test_reconcile_ajouts_et_retraits(db, class_payload, students):
    alice, bruno, chloe = students
    class_id = create_class_with(db, class_payload, [alice.id, bruno.id])

    result = enrollment_service.reconcile_roster(db, class_id, [bruno.id, chloe.id])

    assert result.added == [chloe.id]
    assert result.removed == [alice.id]
    assert result.conflicts == []
    assert set(enrollment_service.get_roster(db, class_id)) == {bruno.id, chloe.id}


def test_reconcile_idempotent(db, class_payload, students):
    class_id = create_class_with(db, class_payload, [])
    desired = [s.id for s in students]

    enrollment_service.reconcile_roster(db, class_id, desired)
    second = enrollment_service.reconcile_roster(db, class_id, desired)

    assert second.added == []
    assert second.removed == []
    assert second.conflicts == []
    assert enrollment_count(db) == 3


def test_reconcile_doublons_dans_la_demande(db, class_payload, students):
    class_id = create_class_with(db, class_payload, [])
    result = enrollment_service.reconcile_roster(db, class_id, [students[0].id, students[0].id])
    assert result.added == [students[0].id]
    assert enrollment_count(db) == 1


def test_retrait_verrouille_par_presence(db, class_payload, students):
    alice, bruno, _ = students
    class_id = create_class_with(db, class_payload, [alice.id, bruno.id])
    mark(db, class_id, {alice.id: "present"})

    result = enrollment_service.reconcile_roster(db, class_id, [])

    assert result.removed == [bruno.id]
    assert [c.student_id for c in result.conflicts] == [alice.id]
    assert result.conflicts[0].reason == "attendance_recorded"
    assert result.roster == [alice.id]


def test_remove_unlocked_ne_supprime_jamais_un_eleve_verrouille(db, class_payload, students):
    alice = students[0]
    class_id = create_class_with(db, class_payload, [alice.id])
    mark(db, class_id, {alice.id: "late"})

    removed = enrollment_service.remove_unlocked(db, class_id, [alice.id])
    db.commit()

    assert removed == []
    assert enrollment_service.get_roster(db, class_id) == [alice.id]


def test_retrait_sans_presence_supprime_la_photographie(db, class_payload, students):
    alice, bruno, _ = students
    class_id = create_class_with(db, class_payload, [alice.id, bruno.id])
    # Feuille consultée mais seule Alice est marquée
    mark(db, class_id, {alice.id: "present"})

    enrollment_service.reconcile_roster(db, class_id, [alice.id])

    snapshot = db.execute(
        select(InstanceEnrollment.student_id).where(InstanceEnrollment.class_instance_id == class_id)
    ).scalars().all()
    assert snapshot == [alice.id]


def test_reconcile_notifie_enseignant(db, class_payload, students, teacher):
    class_id = create_class_with(db, class_payload, [])
    enrollment_service.reconcile_roster(db, class_id, [students[0].id])

    types = db.execute(
        select(Notification.type).where(Notification.user_id == teacher.id)
    ).scalars().all()
    assert "student_added" in types


def test_reconcile_eleve_inconnu(db, class_payload, students):
    class_id = create_class_with(db, class_payload, [students[0].id])
    with pytest.raises(ScheduleValidationError, match="introuvable"):
        enrollment_service.reconcile_roster(db, class_id, [students[0].id, uuid.uuid4()])
    assert enrollment_service.get_roster(db, class_id) == [students[0].id]


def test_reconcile_ancre_de_serie_refusee(db, class_payload, students):
    result = schedule_service.create_class(db, ClassCreate(**class_payload(
        is_recurring=True, weekday=3, recurrence_end_date=date(2024, 3, 27),
    )), today=date(2024, 3, 6))

    with pytest.raises(ScheduleValidationError, match="série"):
        enrollment_service.reconcile_roster(db, result.series_id, [students[0].id])

    assert enrollment_service.get_roster(db, result.series_id) == []
    assert enrollment_count(db) == 0


def test_reconcile_echec_stockage_rollback(db, class_payload, students):
    alice, bruno = students[0], students[1]
    class_id = create_class_with(db, class_payload, [alice.id])

    with patch(
        "studio.services.enrollment_service.insert_ignore",
        side_effect=OperationalError("INSERT", None, Exception("connexion perdue")),
    ):
        with pytest.raises(StorageError):
            enrollment_service.reconcile_roster(db, class_id, [bruno.id])

    # Transaction annulée : roster inchangé
    assert enrollment_service.get_roster(db, class_id) == [alice.id]


def test_reconcile_sans_commit_laisse_remonter_l_erreur():
    db = MagicMock()
    db.execute.return_value.scalars.return_value.all.return_value = []
    with patch(
        "studio.services.enrollment_service.insert_ignore",
        side_effect=OperationalError("INSERT", None, Exception("connexion perdue")),
    ):
        with pytest.raises(OperationalError):
            enrollment_service.reconcile_roster(db, uuid.uuid4(), [], commit=False)
    db.rollback.assert_not_called()
