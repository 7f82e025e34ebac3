"""
Génération des dates d'un cours récurrent hebdomadaire.

Convention des jours : 0 = dimanche … 6 = samedi (numérotation utilisée par le
client web). Fonction pure : aucune lecture de la base, `start` par défaut = aujourd'hui.
"""

from datetime import date, timedelta
from typing import List, Optional

from studio.exceptions import ScheduleValidationError


def _sunday_first_weekday(day: date) -> int:
    """date.weekday() compte lundi = 0 ; on ramène dimanche à 0."""
    return (day.weekday() + 1) % 7


def first_occurrence(weekday: int, start: date) -> date:
    """Premier jour >= start tombant sur `weekday`."""
    days_ahead = (weekday - _sunday_first_weekday(start) + 7) % 7
    return start + timedelta(days=days_ahead)


def weekly_dates(weekday: int, end_date: date, start: Optional[date] = None) -> List[date]:
    """
    Retourne toutes les dates hebdomadaires entre start et end_date (borne incluse).

    - la première date est le premier `weekday` à partir de start (start inclus)
    - les suivantes sont espacées de exactement 7 jours
    - liste vide si la première occurrence dépasse end_date

    La liste est matérialisée car toutes les occurrences sont insérées en un seul lot.
    """
    if weekday is None or not 0 <= weekday <= 6:
        raise ScheduleValidationError("Le jour de la semaine doit être compris entre 0 (dimanche) et 6 (samedi).")

    current = first_occurrence(weekday, start or date.today())
    dates: List[date] = []
    while current <= end_date:
        dates.append(current)
        current += timedelta(days=7)
    return dates
