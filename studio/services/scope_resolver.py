"""
Résolution de la portée d'une modification sur une série récurrente.

resolve(scope, target) retourne une Selection : l'ensemble exact des lignes
à toucher, exprimé sous forme de critères SQLAlchemy. Le résolveur n'écrit jamais ;
l'appelant applique la même mise à jour (ou suppression) à chaque critère.

| Portée | Lignes sélectionnées                                                 |
|--------|----------------------------------------------------------------------|
| single | id == cible                                                          |
| future | occurrences de la série avec date >= date cible (+ ancre si même date) |
| all    | toutes les occurrences de la série + l'ancre                         |

L'ancre est interrogée par `id` et non par `parent_reference` : elle fait
toujours l'objet d'un critère (donc d'une écriture) séparé.
"""

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import and_

from studio.exceptions import ScheduleValidationError
from studio.models.class_instance import ClassInstance
from studio.schemas.class_instance import ModificationScope


@dataclass(frozen=True)
class Selection:
    scope: Optional[ModificationScope]
    target_id: uuid.UUID
    series_id: Optional[uuid.UUID] = None
    from_date: Optional[date] = None

    def criteria(self) -> list:
        """
        Critères WHERE, un par écriture : [occurrences] puis [ancre].
        Une sélection single (ou un cours ponctuel) ne produit qu'un critère.
        """
        if self.scope in (None, ModificationScope.SINGLE):
            return [ClassInstance.id == self.target_id]
        if self.scope is ModificationScope.FUTURE:
            return [
                and_(ClassInstance.parent_reference == self.series_id, ClassInstance.date >= self.from_date),
                and_(ClassInstance.id == self.series_id, ClassInstance.date >= self.from_date),
            ]
        return [
            ClassInstance.parent_reference == self.series_id,
            ClassInstance.id == self.series_id,
        ]


def single(target) -> Selection:
    """Sélection de la seule ligne cible (cours ponctuel, sans résolution de portée)."""
    return Selection(scope=None, target_id=target.id)


def resolve(scope: ModificationScope, target) -> Selection:
    """
    Calcule la sélection pour une cible récurrente.
    Lève ScheduleValidationError si la cible n'est pas récurrente ou si l'on
    tente de modifier l'ancre seule (elle définit toute la série).
    """
    if not target.is_recurring:
        raise ScheduleValidationError("La portée ne s'applique qu'aux cours récurrents.")

    scope = ModificationScope(scope)
    series_id = target.parent_reference or target.id

    if scope is ModificationScope.SINGLE:
        if target.parent_reference is None:
            raise ScheduleValidationError(
                "La définition d'une série ne peut être modifiée qu'avec la portée 'future' ou 'all'."
            )
        return Selection(scope=scope, target_id=target.id, series_id=series_id)
    if scope is ModificationScope.FUTURE:
        return Selection(scope=scope, target_id=target.id, series_id=series_id, from_date=target.date)
    return Selection(scope=scope, target_id=target.id, series_id=series_id)
