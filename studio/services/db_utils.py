"""
Écritures idempotentes partagées par les services (insert « ou ignore »).
"""

import logging

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def insert_ignore(db: Session, model, rows: list) -> int:
    """
    Insère les lignes en ignorant celles qui violent une contrainte d'unicité
    (ex : élève ajouté en parallèle par un autre éditeur).
    Retourne le nombre de lignes réellement insérées.

    PostgreSQL et SQLite : INSERT … ON CONFLICT DO NOTHING.
    Autres moteurs : une insertion par ligne dans un SAVEPOINT.
    """
    if not rows:
        return 0

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        dialect_insert = None

    if dialect_insert is not None:
        inserted = 0
        for row in rows:
            result = db.execute(dialect_insert(model).values(**row).on_conflict_do_nothing())
            inserted += result.rowcount or 0
        return inserted

    inserted = 0
    for row in rows:
        try:
            with db.begin_nested():
                db.execute(insert(model).values(**row))
            inserted += 1
        except IntegrityError:
            logger.debug("Doublon ignoré sur %s : %s", model.__tablename__, row)
    return inserted
