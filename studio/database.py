"""
Configuration de la connexion à la base de données.
PostgreSQL en production ; SQLite accepté pour le développement local et les tests.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from studio.config import settings

# check_same_thread n'est nécessaire que pour SQLite (sessions partagées avec le scheduler)
_is_sqlite = settings.DATABASE_URL.startswith("sqlite")
engine_args = {"connect_args": {"check_same_thread": False}} if _is_sqlite else {}
engine = create_engine(settings.DATABASE_URL, **engine_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def enable_sqlite_foreign_keys(target_engine) -> None:
    """
    Active l'application des clés étrangères sur SQLite (désactivée par défaut).
    Sans cela, les ON DELETE CASCADE des inscriptions et présences sont ignorés.
    """
    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if _is_sqlite:
    enable_sqlite_foreign_keys(engine)


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
