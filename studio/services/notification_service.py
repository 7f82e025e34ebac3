"""
Notifications émises après une mutation de planning.

Les services accumulent des ClassEvent pendant la transaction et appellent
publish() uniquement après un commit réussi. Un échec de notification est
journalisé et n'annule jamais l'état du planning : publish() ne lève pas.

Pour chaque événement :
1. Résolution des destinataires (enseignant du cours, propriétaires du studio, parents)
2. Création des notifications in-app (table notifications)
3. Email si requis et si NOTIFICATION_EMAILS_ENABLED
4. Appel des handlers enregistrés (bus d'événements en mémoire)
"""

import uuid
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from studio.config import settings
from studio.models.class_instance import ClassInstance
from studio.models.notification import Notification
from studio.models.student import Student
from studio.models.user import User
from studio.services import email_service

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CLASS_ASSIGNED = "class_assigned"
    CLASS_SCHEDULE = "class_schedule"
    CLASS_CANCELLATION = "class_cancellation"
    STUDENT_ADDED = "student_added"
    STUDENT_REMOVED = "student_removed"
    CLASS_CAPACITY = "class_capacity"
    UNAUTHORIZED_ABSENCE = "unauthorized_absence"
    STUDENT_CONSECUTIVE_ABSENCE = "student_consecutive_absence"
    ATTENDANCE_MISSING = "attendance_missing"


@dataclass
class ClassEvent:
    kind: EventKind
    class_id: uuid.UUID
    studio_id: Optional[uuid.UUID]
    details: dict = field(default_factory=dict)


# Destinataires, priorité, email requis, titre, message (format avec details)
_TEMPLATES: Dict[EventKind, tuple] = {
    EventKind.CLASS_ASSIGNED: (
        ("teacher",), "high", True,
        "Nouveau cours assigné", "Vous avez été assigné(e) au cours {class_name}.",
    ),
    EventKind.CLASS_SCHEDULE: (
        ("owners", "teacher"), "medium", True,
        "Planning modifié", "Le planning du cours {class_name} a été mis à jour.",
    ),
    EventKind.CLASS_CANCELLATION: (
        ("parents",), "high", True,
        "Cours annulé", "Le cours {class_name} du {date} a été annulé.",
    ),
    EventKind.STUDENT_ADDED: (
        ("teacher",), "medium", False,
        "Nouvel élève", "{student_name} a été ajouté(e) au cours {class_name}.",
    ),
    EventKind.STUDENT_REMOVED: (
        ("teacher",), "medium", False,
        "Élève retiré", "{student_name} a été retiré(e) du cours {class_name}.",
    ),
    EventKind.CLASS_CAPACITY: (
        ("owners",), "medium", True,
        "Capacité atteinte", "Le cours drop-in {class_name} du {date} est complet.",
    ),
    EventKind.UNAUTHORIZED_ABSENCE: (
        ("parents",), "high", True,
        "Absence non justifiée", "{student_name} était absent(e) sans justification au cours {class_name} du {date}.",
    ),
    EventKind.STUDENT_CONSECUTIVE_ABSENCE: (
        ("owners", "teacher"), "high", True,
        "Absences consécutives",
        "{student_name} a manqué {absence_count} cours consécutifs de {class_name}.",
    ),
    EventKind.ATTENDANCE_MISSING: (
        ("teacher", "owners"), "medium", True,
        "Présences non saisies", "Les présences du cours {class_name} du {date} n'ont pas été saisies.",
    ),
}

_handlers: List[Callable[[ClassEvent], None]] = []


def register_handler(handler: Callable[[ClassEvent], None]) -> None:
    """Abonne un handler supplémentaire (ex : webhook, file de messages)."""
    _handlers.append(handler)


def clear_handlers() -> None:
    _handlers.clear()


def publish(db: Session, events: Iterable[ClassEvent]) -> int:
    """
    Diffuse les événements. À appeler uniquement après le commit de la mutation.
    Retourne le nombre de notifications in-app créées. Ne lève jamais.
    """
    created = 0
    for event in events:
        try:
            created += _deliver(db, event)
        except Exception as exc:
            db.rollback()
            logger.error(
                "Échec de la notification %s pour le cours %s : %s",
                event.kind.value, event.class_id, exc, exc_info=True,
            )

        for handler in list(_handlers):
            try:
                handler(event)
            except Exception as exc:
                logger.error("Handler de notification en échec (%s) : %s", event.kind.value, exc, exc_info=True)
    return created


def _deliver(db: Session, event: ClassEvent) -> int:
    audiences, priority, email_required, title, template = _TEMPLATES[event.kind]
    recipients = _resolve_recipients(db, event, audiences)
    if not recipients:
        logger.debug("Aucun destinataire pour %s (cours %s)", event.kind.value, event.class_id)
        return 0

    message = template.format_map(_DefaultDict(event.details))
    notifications = []
    for user in recipients:
        notification = Notification(
            user_id=user.id,
            studio_id=event.studio_id,
            type=event.kind.value,
            title=title,
            message=message,
            priority=priority,
            entity_id=event.details.get("student_id") or event.class_id,
            entity_type="student" if event.details.get("student_id") else "class",
            details=_json_safe(event.details),
            email_required=email_required,
        )
        db.add(notification)
        notifications.append((notification, user))
    db.commit()

    if email_required and settings.NOTIFICATION_EMAILS_ENABLED:
        for notification, user in notifications:
            try:
                email_service.send_notification_email(user.email, user.name or "", title, message)
                notification.email_sent = True
            except Exception as exc:
                logger.error("Email de notification non envoyé à %s : %s", user.email, exc)
        db.commit()

    logger.info(
        "Notification %s, cours %s : %d destinataire(s)",
        event.kind.value, event.class_id, len(notifications),
    )
    return len(notifications)


def _resolve_recipients(db: Session, event: ClassEvent, audiences: tuple) -> List[User]:
    """Dédoublonne les destinataires en conservant l'ordre des audiences."""
    user_ids: List[uuid.UUID] = []

    for audience in audiences:
        if audience == "teacher":
            teacher_id = event.details.get("teacher_id")
            if teacher_id is None:
                instance = db.get(ClassInstance, event.class_id)
                teacher_id = instance.teacher_id if instance else None
            if teacher_id:
                user_ids.append(uuid.UUID(str(teacher_id)))
        elif audience == "owners" and event.studio_id is not None:
            user_ids.extend(db.execute(
                select(User.id).where(User.studio_id == event.studio_id, User.role == "OWNER")
            ).scalars().all())
        elif audience == "parents":
            student_ids = event.details.get("student_ids") or []
            if event.details.get("student_id"):
                student_ids = [event.details["student_id"]]
            if student_ids:
                user_ids.extend(db.execute(
                    select(Student.parent_id)
                    .where(Student.id.in_([uuid.UUID(str(s)) for s in student_ids]))
                    .where(Student.parent_id.isnot(None))
                    .distinct()
                ).scalars().all())

    unique_ids = list(dict.fromkeys(user_ids))
    if not unique_ids:
        return []
    users = db.execute(select(User).where(User.id.in_(unique_ids))).scalars().all()
    by_id = {u.id: u for u in users}
    return [by_id[uid] for uid in unique_ids if uid in by_id]


class _DefaultDict(dict):
    """Les clés absentes du template restent lisibles au lieu de lever KeyError."""

    def __missing__(self, key):
        return "?"


def _json_safe(details: dict) -> dict:
    safe = {}
    for key, value in details.items():
        if isinstance(value, (list, tuple, set)):
            safe[key] = [str(v) if not isinstance(v, (int, float, bool)) else v for v in value]
        elif value is None or isinstance(value, (str, int, float, bool)):
            safe[key] = value
        else:
            safe[key] = str(value)
    return safe
