"""
Planificateur APScheduler du balayage des présences non saisies.

Le job s'exécute toutes les ATTENDANCE_SWEEP_INTERVAL_HOURS heures : les
occurrences passées avec des élèves inscrits et aucune présence enregistrée
sont signalées (attendance_flagged_at) et une notification attendance_missing
est envoyée à l'enseignant et aux propriétaires.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from studio.config import settings
from studio.database import SessionLocal

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _sweep_missing_attendance() -> None:
    """
    Tâche planifiée : signale les présences non saisies.
    Import local pour éviter les imports circulaires.
    """
    from studio.services.attendance_service import flag_overdue_attendance

    db = SessionLocal()
    try:
        flagged = flag_overdue_attendance(db)
        if flagged:
            logger.info("Balayage des présences : %d occurrence(s) signalée(s)", flagged)
    except Exception as exc:
        logger.error("Erreur lors du balayage des présences : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    if not settings.ATTENDANCE_SWEEP_ENABLED:
        logger.info("Balayage des présences désactivé (ATTENDANCE_SWEEP_ENABLED=false).")
        return
    scheduler.add_job(
        _sweep_missing_attendance,
        trigger="interval",
        hours=settings.ATTENDANCE_SWEEP_INTERVAL_HOURS,
        id="attendance_missing_sweep",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler démarré : balayage des présences toutes les %d heure(s).",
        settings.ATTENDANCE_SWEEP_INTERVAL_HOURS,
    )


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
