"""
Tests des réservations drop-in et du suivi de capacité.
Invariant vérifié : booked_count <= capacity quelle que soit la séquence de réservations.
"""

import uuid
from datetime import date, time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from studio.database import Base, enable_sqlite_foreign_keys
from studio.exceptions import CapacityExceededError, ClassNotFoundError, ScheduleValidationError
from studio.models.booking import DropInBooking
from studio.models.class_instance import ClassInstance
from studio.models.location import Location
from studio.models.notification import Notification
from studio.models.student import Student
from studio.models.user import User
from studio.schemas.attendance import AttendanceMark, AttendanceSaveRequest
from studio.schemas.booking import BookingCreate
from studio.schemas.class_instance import ClassCreate
from studio.services import attendance_service, booking_service, capacity_service, enrollment_service
from studio.services import notification_service, schedule_service


# --- Helpers ---

def create_drop_in(db, class_payload, capacity=2, student_ids=()):
    result = schedule_service.create_class(db, ClassCreate(**class_payload(
        date=date(2024, 5, 4),
        is_drop_in=True,
        capacity=capacity,
        drop_in_price=Decimal("12.50"),
        student_ids=list(student_ids),
    )))
    return result.instance_ids[0]


def book(db, class_id, student):
    return booking_service.book_drop_in(db, class_id, BookingCreate(student_id=student.id, parent_id=student.parent_id))


def booked_count(db, class_id):
    db.expire_all()
    return db.get(ClassInstance, class_id).booked_count


# ============================================================
# spots_remaining (sans base)
# ============================================================

def test_spots_remaining_drop_in():
    assert capacity_service.spots_remaining(MagicMock(is_drop_in=True, capacity=10, booked_count=7)) == 3


def test_spots_remaining_jamais_negatif():
    assert capacity_service.spots_remaining(MagicMock(is_drop_in=True, capacity=2, booked_count=5)) == 0


def test_spots_remaining_cours_classique():
    assert capacity_service.spots_remaining(MagicMock(is_drop_in=False, capacity=None, booked_count=0)) is None


# ============================================================
# Réservation (SQLite)
# ============================================================

def test_reservation_consomme_une_place(db, class_payload, students):
    class_id = create_drop_in(db, class_payload)

    result = book(db, class_id, students[0])

    assert result.booked is True
    assert result.duplicate is False
    assert result.booked_count == 1
    assert result.spots_remaining == 1
    assert enrollment_service.get_roster(db, class_id) == [students[0].id]


def test_reservation_en_double_idempotente(db, class_payload, students):
    class_id = create_drop_in(db, class_payload)
    book(db, class_id, students[0])

    again = book(db, class_id, students[0])

    assert again.booked is False
    assert again.duplicate is True
    assert booked_count(db, class_id) == 1


def test_cours_complet_refuse(db, class_payload, students):
    alice, bruno, chloe = students
    class_id = create_drop_in(db, class_payload, capacity=2)
    book(db, class_id, alice)
    book(db, class_id, bruno)

    with pytest.raises(CapacityExceededError):
        book(db, class_id, chloe)

    assert booked_count(db, class_id) == 2
    # La ligne de réservation de Chloé est annulée avec la transaction
    assert db.execute(select(func.count()).select_from(DropInBooking)).scalar() == 2
    assert chloe.id not in enrollment_service.get_roster(db, class_id)


def test_capacite_jamais_depassee(db, class_payload, students):
    class_id = create_drop_in(db, class_payload, capacity=1)
    outcomes = []
    for student in students:
        try:
            outcomes.append(book(db, class_id, student).booked)
        except CapacityExceededError:
            outcomes.append(False)

    assert outcomes == [True, False, False]
    assert booked_count(db, class_id) == 1


def test_derniere_place_notifie_les_proprietaires(db, class_payload, students, owner):
    class_id = create_drop_in(db, class_payload, capacity=1)
    result = book(db, class_id, students[0])

    assert result.spots_remaining == 0
    types = db.execute(
        select(Notification.type).where(Notification.user_id == owner.id)
    ).scalars().all()
    assert types == ["class_capacity"]


def test_reservation_cours_non_drop_in(db, class_payload, students):
    result = schedule_service.create_class(db, ClassCreate(**class_payload(date=date(2024, 5, 4))))
    with pytest.raises(ScheduleValidationError):
        book(db, result.instance_ids[0], students[0])


def test_reservation_ancre_de_serie_refusee(db, class_payload, students):
    result = schedule_service.create_class(db, ClassCreate(**class_payload(
        is_recurring=True,
        weekday=6,
        recurrence_end_date=date(2024, 5, 25),
        is_drop_in=True,
        capacity=2,
        drop_in_price=Decimal("12.50"),
    )), today=date(2024, 5, 1))

    with pytest.raises(ScheduleValidationError, match="série"):
        book(db, result.series_id, students[0])

    assert booked_count(db, result.series_id) == 0
    assert db.execute(select(func.count()).select_from(DropInBooking)).scalar() == 0
    # Les occurrences datées restent réservables
    assert book(db, result.instance_ids[0], students[0]).booked is True


def test_reservation_eleve_inconnu(db, class_payload):
    class_id = create_drop_in(db, class_payload)
    with pytest.raises(ScheduleValidationError, match="Élève"):
        booking_service.book_drop_in(db, class_id, BookingCreate(student_id=uuid.uuid4()))


def test_reservation_cours_inexistant():
    db = MagicMock()
    db.get.return_value = None
    with pytest.raises(ClassNotFoundError):
        booking_service.book_drop_in(db, uuid.uuid4(), BookingCreate(student_id=uuid.uuid4()))


# ============================================================
# Annulation (SQLite)
# ============================================================

def test_annulation_libere_la_place(db, class_payload, students):
    class_id = create_drop_in(db, class_payload)
    book(db, class_id, students[0])

    assert booking_service.cancel_booking(db, class_id, students[0].id) is True
    assert booked_count(db, class_id) == 0
    assert enrollment_service.get_roster(db, class_id) == []
    assert booking_service.get_active_bookings(db, class_id) == []


def test_reservations_actives_cours_inexistant(db):
    with pytest.raises(ClassNotFoundError):
        booking_service.get_active_bookings(db, uuid.uuid4())


def test_annulation_inexistante(db, class_payload, students):
    class_id = create_drop_in(db, class_payload)
    assert booking_service.cancel_booking(db, class_id, students[0].id) is False
    assert booked_count(db, class_id) == 0


def test_nouvelle_reservation_apres_annulation(db, class_payload, students):
    class_id = create_drop_in(db, class_payload)
    book(db, class_id, students[0])
    booking_service.cancel_booking(db, class_id, students[0].id)

    result = book(db, class_id, students[0])

    assert result.booked is True
    assert booked_count(db, class_id) == 1
    assert booking_service.get_active_bookings(db, class_id) == [students[0].id]


def test_annulation_conserve_eleve_du_roster_regulier(db, class_payload, students):
    alice = students[0]
    class_id = create_drop_in(db, class_payload, student_ids=[alice.id])
    book(db, class_id, alice)

    booking_service.cancel_booking(db, class_id, alice.id)
    assert enrollment_service.get_roster(db, class_id) == [alice.id]


def test_annulation_avec_presence_conserve_inscription(db, class_payload, students):
    alice = students[0]
    class_id = create_drop_in(db, class_payload)
    book(db, class_id, alice)
    sheet = attendance_service.get_attendance_sheet(db, class_id)
    attendance_service.save_attendance(db, class_id, AttendanceSaveRequest(records=[
        AttendanceMark(enrollment_id=sheet.entries[0].enrollment_id, status="present"),
    ]))

    booking_service.cancel_booking(db, class_id, alice.id)

    assert booked_count(db, class_id) == 0
    assert enrollment_service.get_roster(db, class_id) == [alice.id]


# ============================================================
# Capacité (SQLite)
# ============================================================

def test_availability(db, class_payload, students):
    class_id = create_drop_in(db, class_payload, capacity=5)
    book(db, class_id, students[0])

    availability = capacity_service.get_availability(db, class_id)
    assert availability.capacity == 5
    assert availability.booked_count == 1
    assert availability.spots_remaining == 4


def test_availability_cours_inexistant(db):
    assert capacity_service.get_availability(db, uuid.uuid4()) is None


def test_release_spot_jamais_negatif(db, class_payload):
    class_id = create_drop_in(db, class_payload)
    assert capacity_service.release_spot(db, class_id) is False
    db.commit()
    assert booked_count(db, class_id) == 0


def test_reserve_spot_cours_inexistant(db):
    with pytest.raises(ClassNotFoundError):
        capacity_service.reserve_spot(db, uuid.uuid4())


# ============================================================
# Concurrence : deux sessions sur une base SQLite fichier
# ============================================================

@pytest.fixture
def two_sessions(tmp_path):
    """Deux sessions indépendantes (connexions distinctes) sur la même base."""
    engine = create_engine(f"sqlite:///{tmp_path / 'studio.db'}")
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()
        notification_service.clear_handlers()


def seed_last_spot(db):
    """Cours drop-in à une place et deux élèves prêts à réserver."""
    studio_id = uuid.uuid4()
    teacher = User(id=uuid.uuid4(), studio_id=studio_id, email="prof@studio.test", name="Marc Prof", role="TEACHER")
    location = Location(id=uuid.uuid4(), studio_id=studio_id, name="Salle A")
    students = [
        Student(id=uuid.uuid4(), studio_id=studio_id, name=name)
        for name in ("Alice", "Bruno")
    ]
    db.add_all([teacher, location, *students])
    db.commit()

    result = schedule_service.create_class(db, ClassCreate(
        studio_id=studio_id,
        name="Jazz",
        teacher_id=teacher.id,
        location_id=location.id,
        start_time=time(17, 0),
        end_time=time(18, 0),
        date=date(2024, 5, 4),
        is_drop_in=True,
        capacity=1,
        drop_in_price=Decimal("12.50"),
    ))
    return result.instance_ids[0], [s.id for s in students]


def test_derniere_place_disputee_par_deux_sessions(two_sessions):
    first, second = two_sessions
    class_id, (alice_id, bruno_id) = seed_last_spot(first)

    # La seconde session voit encore une place libre
    assert capacity_service.spots_remaining(second.get(ClassInstance, class_id)) == 1

    assert booking_service.book_drop_in(first, class_id, BookingCreate(student_id=alice_id)).booked is True
    with pytest.raises(CapacityExceededError):
        booking_service.book_drop_in(second, class_id, BookingCreate(student_id=bruno_id))

    assert booked_count(first, class_id) == 1
    assert booking_service.get_active_bookings(first, class_id) == [alice_id]
    assert enrollment_service.get_roster(second, class_id) == [alice_id]
