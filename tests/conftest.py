"""
Configuration partagée pour tous les tests.

- client : override de get_db par un MagicMock (aucune connexion réelle à PostgreSQL)
- db : base SQLite en mémoire pour les tests d'invariants (portées, verrou de
  présence, remplacement des présences, capacité)
"""

import os
import uuid
from datetime import time

# Pas de job APScheduler pendant les tests
os.environ.setdefault("ATTENDANCE_SWEEP_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock

import studio.models  # noqa: F401
from studio.database import Base, enable_sqlite_foreign_keys, get_db
from studio.main import app
from studio.models.location import Location
from studio.models.student import Student
from studio.models.user import User
from studio.services import notification_service


@pytest.fixture
def client():
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    """Session SQLite en mémoire, clés étrangères activées (ON DELETE CASCADE)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()
        notification_service.clear_handlers()


@pytest.fixture
def studio_id():
    return uuid.uuid4()


@pytest.fixture
def owner(db, studio_id):
    return add_user(db, studio_id, "OWNER", "owner@studio.test", "Claire Owner")


@pytest.fixture
def teacher(db, studio_id):
    return add_user(db, studio_id, "TEACHER", "prof@studio.test", "Marc Prof")


@pytest.fixture
def other_teacher(db, studio_id):
    return add_user(db, studio_id, "TEACHER", "prof2@studio.test", "Nora Prof")


@pytest.fixture
def location(db, studio_id):
    loc = Location(id=uuid.uuid4(), studio_id=studio_id, name="Salle A")
    db.add(loc)
    db.commit()
    return loc


@pytest.fixture
def parent(db, studio_id):
    return add_user(db, studio_id, "PARENT", "parent@studio.test", "Paul Parent")


@pytest.fixture
def students(db, studio_id, parent):
    rows = [
        Student(id=uuid.uuid4(), studio_id=studio_id, name=name, parent_id=parent.id)
        for name in ("Alice", "Bruno", "Chloé")
    ]
    db.add_all(rows)
    db.commit()
    return rows


def add_user(db, studio_id, role, email, name):
    user = User(id=uuid.uuid4(), studio_id=studio_id, email=email, name=name, role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def class_payload(teacher, location, studio_id):
    """Fabrique de ClassCreate valides (cours ponctuel par défaut)."""
    def build(**overrides) -> dict:
        payload = {
            "name": "Danse classique",
            "studio_id": studio_id,
            "teacher_id": teacher.id,
            "location_id": location.id,
            "start_time": time(17, 0),
            "end_time": time(18, 0),
        }
        payload.update(overrides)
        return payload
    return build
