import os
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402
from clinic_backend.models.user import User  # noqa: E402
from clinic_backend.routes.appointment_routes import (  # noqa: E402
    calendar_view,
    cancel_appointment,
    create_appointment,
    get_appointment,
    list_appointments,
    raise_for_result,
    update_appointment,
)
from clinic_backend.schemas.appointment import (  # noqa: E402
    CreateAppointmentRequest,
    UpdateAppointmentRequest,
)
from clinic_backend.services.appointment_engine import (  # noqa: E402
    AppointmentEngine,
    AppointmentError,
    EngineResult,
)
from clinic_backend.services.appointment_store import SqlAppointmentStore  # noqa: E402

NOW = datetime(2026, 3, 2, 8, 0)
ADMIN = SimpleNamespace(id=1, role_id=1)
STAFF = SimpleNamespace(id=2, role_id=2)


@pytest.fixture
def appointment_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    tables = [User.__table__, Patient.__table__, Appointment.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)

    db = testing_session_local()
    try:
        db.add(Patient(id=1, document='1001', first_names='Ana', last_names='Rojas'))
        db.commit()
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(tables)))


@pytest.fixture
def scheduler(appointment_db, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('clinic_backend.routes.appointment_routes.ensure_database_ready', lambda: None)
    return AppointmentEngine(
        SqlAppointmentStore(appointment_db),
        clock=lambda: NOW,
        admin_role_id=1,
        reschedule_conflict_check=False,
    )


def appointment_request(**overrides) -> CreateAppointmentRequest:
    values = {
        'patient_id': 1,
        'professional_id': 10,
        'start_time': datetime(2026, 3, 2, 10, 0),
        'end_time': datetime(2026, 3, 2, 10, 30),
        'service_type_id': 1,
    }
    values.update(overrides)
    return CreateAppointmentRequest(**values)


def list_all(scheduler, **filters):
    params = {
        'page': 1,
        'limit': 10,
        'start_from': None,
        'end_until': None,
        'status_id': None,
        'professional_id': None,
        'service_type_id': None,
        'patient_id': None,
    }
    params.update(filters)
    return list_appointments(engine=scheduler, **params)


def test_create_appointment_request_normalizes_notes() -> None:
    assert appointment_request(notes='  call first  ').notes == 'call first'
    assert appointment_request(notes='   ').notes is None


def test_create_appointment_request_rejects_long_notes() -> None:
    with pytest.raises(ValidationError):
        appointment_request(notes='x' * 1001)


def test_create_appointment_request_rejects_non_positive_ids() -> None:
    with pytest.raises(ValidationError):
        appointment_request(patient_id=0)


def test_update_request_tracks_only_sent_fields() -> None:
    patch = UpdateAppointmentRequest(professional_id=None, notes='moved')

    assert patch.changes() == {'professional_id': None, 'notes': 'moved'}


def test_update_request_changes_hold_plain_status_ids() -> None:
    changes = UpdateAppointmentRequest(status_id=AppointmentStatus.CONFIRMED).changes()

    assert changes == {'status_id': 2}
    assert type(changes['status_id']) is int


def local_naive(value: datetime) -> datetime:
    return value.astimezone().replace(tzinfo=None)


def test_appointment_requests_convert_utc_times_to_local_naive() -> None:
    request = CreateAppointmentRequest.model_validate(
        {
            'patient_id': 1,
            'start_time': '2030-03-02T10:00:00Z',
            'end_time': '2030-03-02T10:30:00Z',
            'service_type_id': 1,
        }
    )
    patch = UpdateAppointmentRequest.model_validate({'end_time': '2030-03-02T11:00:00+00:00'})

    assert request.start_time == local_naive(datetime(2030, 3, 2, 10, 0, tzinfo=timezone.utc))
    assert request.start_time.tzinfo is None
    assert patch.end_time == local_naive(datetime(2030, 3, 2, 11, 0, tzinfo=timezone.utc))
    assert patch.end_time.tzinfo is None


def test_create_appointment_accepts_utc_suffixed_times(scheduler) -> None:
    data = CreateAppointmentRequest.model_validate(
        {
            'patient_id': 1,
            'professional_id': 10,
            'start_time': '2030-03-02T10:00:00Z',
            'end_time': '2030-03-02T10:30:00Z',
            'service_type_id': 1,
        }
    )

    response = create_appointment(data=data, current_user=STAFF, engine=scheduler)

    assert response.start_time == local_naive(datetime(2030, 3, 2, 10, 0, tzinfo=timezone.utc))
    assert response.end_time == local_naive(datetime(2030, 3, 2, 10, 30, tzinfo=timezone.utc))


def test_update_appointment_accepts_utc_suffixed_start(scheduler) -> None:
    created = create_appointment(
        data=appointment_request(
            start_time=datetime(2030, 3, 2, 10, 0),
            end_time=datetime(2030, 3, 3, 10, 0),
        ),
        current_user=STAFF,
        engine=scheduler,
    )

    response = update_appointment(
        appointment_id=created.id,
        data=UpdateAppointmentRequest.model_validate({'start_time': '2030-03-02T12:00:00Z'}),
        current_user=STAFF,
        engine=scheduler,
    )

    assert response.start_time == local_naive(datetime(2030, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.mark.parametrize(
    'payload',
    [
        {'status_id': 4},
        {'start_time': None},
        {'service_type_id': None},
        {'room_id': 3},
        {'status_id': 9},
    ],
)
def test_update_request_rejects_invalid_patches(payload: dict) -> None:
    with pytest.raises(ValidationError):
        UpdateAppointmentRequest(**payload)


@pytest.mark.parametrize(
    ('error', 'status_code'),
    [
        (AppointmentError.INVALID_WINDOW, 400),
        (AppointmentError.PAST_SCHEDULE, 400),
        (AppointmentError.NO_FIELDS_TO_UPDATE, 400),
        (AppointmentError.PAST_EDIT_FORBIDDEN, 403),
        (AppointmentError.NOT_FOUND, 404),
        (AppointmentError.PROFESSIONAL_CONFLICT, 409),
        (AppointmentError.PATIENT_CONFLICT, 409),
    ],
)
def test_raise_for_result_maps_error_kinds(error: AppointmentError, status_code: int) -> None:
    with pytest.raises(HTTPException) as exception_info:
        raise_for_result(EngineResult.failure(error))

    assert exception_info.value.status_code == status_code


def test_raise_for_result_returns_value_on_success() -> None:
    assert raise_for_result(EngineResult.success('booked')) == 'booked'


def test_create_appointment_returns_scheduled_appointment(scheduler) -> None:
    response = create_appointment(data=appointment_request(notes='First visit'), current_user=STAFF, engine=scheduler)

    assert response.status == 'scheduled'
    assert response.status_id == AppointmentStatus.SCHEDULED
    assert response.patient_name == 'Ana Rojas'
    assert response.updated_by == STAFF.id
    assert response.notes == 'First visit'


def test_create_appointment_rejects_professional_conflict(scheduler) -> None:
    create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            data=appointment_request(
                patient_id=2,
                start_time=datetime(2026, 3, 2, 10, 15),
                end_time=datetime(2026, 3, 2, 10, 45),
            ),
            current_user=STAFF,
            engine=scheduler,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Professional has a conflicting appointment at this time.'


def test_create_appointment_rejects_past_start(scheduler) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(
            data=appointment_request(
                start_time=datetime(2026, 3, 1, 10, 0),
                end_time=datetime(2026, 3, 1, 10, 30),
            ),
            current_user=STAFF,
            engine=scheduler,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Appointment cannot be scheduled in the past.'


def test_create_appointment_returns_503_when_database_fails(scheduler, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_insert(appointment):
        raise SQLAlchemyError('connection lost')

    monkeypatch.setattr(scheduler.store, 'insert', broken_insert)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)

    assert exception_info.value.status_code == 503


def test_get_appointment_returns_not_found(scheduler) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=404, engine=scheduler)

    assert exception_info.value.status_code == 404


def test_update_appointment_forbids_staff_editing_past_appointment(scheduler, appointment_db) -> None:
    appointment = Appointment(
        patient_id=1,
        professional_id=10,
        start_time=datetime(2026, 3, 1, 9, 0),
        end_time=datetime(2026, 3, 1, 9, 30),
        service_type_id=1,
        status_id=AppointmentStatus.SCHEDULED.value,
    )
    appointment_db.add(appointment)
    appointment_db.commit()

    with pytest.raises(HTTPException) as exception_info:
        update_appointment(
            appointment_id=appointment.id,
            data=UpdateAppointmentRequest(status_id=AppointmentStatus.COMPLETED),
            current_user=STAFF,
            engine=scheduler,
        )
    assert exception_info.value.status_code == 403

    response = update_appointment(
        appointment_id=appointment.id,
        data=UpdateAppointmentRequest(status_id=AppointmentStatus.COMPLETED),
        current_user=ADMIN,
        engine=scheduler,
    )
    assert response.status == 'completed'
    assert response.updated_by == ADMIN.id


def test_update_appointment_rejects_empty_patch(scheduler) -> None:
    created = create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment(
            appointment_id=created.id,
            data=UpdateAppointmentRequest(),
            current_user=STAFF,
            engine=scheduler,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'No valid fields to update.'


def test_cancel_appointment_soft_deletes(scheduler, appointment_db) -> None:
    created = create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)

    response = cancel_appointment(appointment_id=created.id, current_user=ADMIN, engine=scheduler)

    assert response.message == 'Appointment cancelled successfully.'
    assert get_appointment(appointment_id=created.id, engine=scheduler).status == 'cancelled'


def test_cancel_appointment_returns_not_found(scheduler) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_appointment(appointment_id=404, current_user=STAFF, engine=scheduler)

    assert exception_info.value.status_code == 404


def test_list_appointments_paginates_newest_first(scheduler) -> None:
    for hour in (9, 10, 11):
        create_appointment(
            data=appointment_request(
                start_time=datetime(2026, 3, 2, hour, 0),
                end_time=datetime(2026, 3, 2, hour, 30),
            ),
            current_user=STAFF,
            engine=scheduler,
        )

    first_page = list_all(scheduler, limit=2)
    second_page = list_all(scheduler, limit=2, page=2)

    assert [item.start_time.hour for item in first_page.data] == [11, 10]
    assert [item.start_time.hour for item in second_page.data] == [9]
    assert first_page.pagination.total == 3
    assert first_page.pagination.pages == 2


def test_list_appointments_applies_filters(scheduler) -> None:
    create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)
    create_appointment(
        data=appointment_request(
            professional_id=11,
            start_time=datetime(2026, 3, 3, 10, 0),
            end_time=datetime(2026, 3, 3, 10, 30),
        ),
        current_user=STAFF,
        engine=scheduler,
    )

    by_professional = list_all(scheduler, professional_id=11)
    by_window = list_all(scheduler, end_until=datetime(2026, 3, 2, 23, 59))

    assert [item.professional_id for item in by_professional.data] == [11]
    assert [item.professional_id for item in by_window.data] == [10]


def test_calendar_view_hides_cancelled_appointments(scheduler) -> None:
    kept = create_appointment(data=appointment_request(), current_user=STAFF, engine=scheduler)
    dropped = create_appointment(
        data=appointment_request(
            start_time=datetime(2026, 3, 2, 11, 0),
            end_time=datetime(2026, 3, 2, 11, 30),
        ),
        current_user=STAFF,
        engine=scheduler,
    )
    cancel_appointment(appointment_id=dropped.id, current_user=STAFF, engine=scheduler)

    entries = calendar_view(start=None, end=None, professional_id=None, engine=scheduler)

    assert [entry.id for entry in entries] == [kept.id]
    assert entries[0].color == '#007bff'
    assert entries[0].title == 'Ana Rojas'
