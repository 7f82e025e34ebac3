"""
Tests du service de notifications : résolution des destinataires, email
optionnel et garantie qu'un échec ne remonte jamais à l'appelant.
"""

import smtplib
import uuid
from unittest.mock import MagicMock, patch

from sqlalchemy import select

from studio.models.notification import Notification
from studio.services import notification_service
from studio.services.notification_service import ClassEvent, EventKind


# --- Helpers ---

def make_event(kind=EventKind.CLASS_SCHEDULE, studio_id=None, **details):
    return ClassEvent(kind=kind, class_id=uuid.uuid4(), studio_id=studio_id, details=details)


def notifications_of(db, user_id):
    return db.execute(select(Notification).where(Notification.user_id == user_id)).scalars().all()


# ============================================================
# Robustesse (session mockée)
# ============================================================

def test_publish_ne_leve_jamais():
    db = MagicMock()
    with patch("studio.services.notification_service._deliver", side_effect=RuntimeError("boom")):
        created = notification_service.publish(db, [make_event(), make_event()])
    assert created == 0
    assert db.rollback.call_count == 2


def test_publish_appelle_les_handlers():
    db = MagicMock()
    received = []
    notification_service.register_handler(received.append)
    try:
        with patch("studio.services.notification_service._deliver", return_value=0):
            event = make_event(EventKind.CLASS_CAPACITY)
            notification_service.publish(db, [event])
    finally:
        notification_service.clear_handlers()
    assert received == [event]


def test_handler_en_echec_ignore():
    db = MagicMock()

    def failing(event):
        raise RuntimeError("webhook indisponible")

    notification_service.register_handler(failing)
    try:
        with patch("studio.services.notification_service._deliver", return_value=1):
            assert notification_service.publish(db, [make_event()]) == 1
    finally:
        notification_service.clear_handlers()


def test_publish_liste_vide():
    db = MagicMock()
    assert notification_service.publish(db, []) == 0
    db.commit.assert_not_called()


# ============================================================
# Destinataires (SQLite)
# ============================================================

def test_planning_modifie_proprietaires_et_enseignant(db, studio_id, owner, teacher):
    event = make_event(EventKind.CLASS_SCHEDULE, studio_id, class_name="Jazz", teacher_id=teacher.id)
    assert notification_service.publish(db, [event]) == 2

    notification = notifications_of(db, owner.id)[0]
    assert notification.title == "Planning modifié"
    assert "Jazz" in notification.message
    assert notification.priority == "medium"
    assert notifications_of(db, teacher.id)[0].type == "class_schedule"


def test_destinataire_en_double_notifie_une_fois(db, studio_id, owner):
    # Le propriétaire est aussi l'enseignant du cours
    event = make_event(EventKind.CLASS_SCHEDULE, studio_id, class_name="Jazz", teacher_id=owner.id)
    assert notification_service.publish(db, [event]) == 1


def test_annulation_notifie_les_parents(db, students, parent):
    event = make_event(
        EventKind.CLASS_CANCELLATION, class_name="Jazz", date="2024-01-10",
        student_ids=[s.id for s in students],
    )
    assert notification_service.publish(db, [event]) == 1
    notification = notifications_of(db, parent.id)[0]
    assert notification.message == "Le cours Jazz du 2024-01-10 a été annulé."
    assert notification.details["student_ids"] == [str(s.id) for s in students]


def test_aucun_destinataire(db):
    event = make_event(EventKind.CLASS_CAPACITY, studio_id=uuid.uuid4(), class_name="Jazz")
    assert notification_service.publish(db, [event]) == 0


def test_champ_manquant_dans_le_message(db, teacher):
    event = make_event(EventKind.STUDENT_ADDED, teacher_id=teacher.id, class_name="Jazz")
    notification_service.publish(db, [event])
    assert notifications_of(db, teacher.id)[0].message == "? a été ajouté(e) au cours Jazz."


# ============================================================
# Email (SQLite)
# ============================================================

def test_email_envoye_si_active(db, teacher):
    event = make_event(EventKind.CLASS_ASSIGNED, teacher_id=teacher.id, class_name="Jazz")
    with patch.object(notification_service.settings, "NOTIFICATION_EMAILS_ENABLED", True), \
         patch("studio.services.notification_service.email_service.send_notification_email") as mock_send:
        notification_service.publish(db, [event])

    mock_send.assert_called_once_with(
        "prof@studio.test", "Marc Prof", "Nouveau cours assigné", "Vous avez été assigné(e) au cours Jazz."
    )
    assert notifications_of(db, teacher.id)[0].email_sent is True


def test_email_desactive_par_defaut(db, teacher):
    event = make_event(EventKind.CLASS_ASSIGNED, teacher_id=teacher.id, class_name="Jazz")
    with patch("studio.services.notification_service.email_service.send_notification_email") as mock_send:
        notification_service.publish(db, [event])
    mock_send.assert_not_called()


def test_echec_smtp_conserve_la_notification(db, teacher):
    event = make_event(EventKind.CLASS_ASSIGNED, teacher_id=teacher.id, class_name="Jazz")
    with patch.object(notification_service.settings, "NOTIFICATION_EMAILS_ENABLED", True), \
         patch("studio.services.notification_service.email_service.send_notification_email",
               side_effect=smtplib.SMTPException("refusé")):
        assert notification_service.publish(db, [event]) == 1

    notification = notifications_of(db, teacher.id)[0]
    assert notification.email_sent is False
    assert notification.email_required is True
