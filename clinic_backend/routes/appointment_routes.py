import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.database import DATABASE_UNAVAILABLE_DETAIL, ensure_appointment_schema, get_db
from clinic_backend.models.user import User
from clinic_backend.schemas.appointment import (
    AppointmentListResponse,
    AppointmentResponse,
    CalendarEntryResponse,
    CreateAppointmentRequest,
    MessageResponse,
    PaginationResponse,
    UpdateAppointmentRequest,
    to_appointment_response,
)
from clinic_backend.services.appointment_engine import ERRORS, AppointmentEngine, EngineResult
from clinic_backend.services.appointment_store import SqlAppointmentStore

router = APIRouter(tags=['appointments'], dependencies=[Depends(get_current_user)])

logger = logging.getLogger(__name__)


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_appointment_engine(db: Session = Depends(get_db)) -> AppointmentEngine:
    return AppointmentEngine(SqlAppointmentStore(db))


def raise_for_result(result: EngineResult):
    if result.ok:
        return result.value

    error = ERRORS[result.error]
    raise HTTPException(status_code=error['status_code'], detail=error['detail'])


def database_unavailable(engine: AppointmentEngine) -> HTTPException:
    logger.exception('Appointment database operation failed')
    engine.store.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    start_from: datetime | None = Query(default=None),
    end_until: datetime | None = Query(default=None),
    status_id: int | None = Query(default=None, ge=1),
    professional_id: int | None = Query(default=None, ge=1),
    service_type_id: int | None = Query(default=None, ge=1),
    patient_id: int | None = Query(default=None, ge=1),
    engine: AppointmentEngine = Depends(get_appointment_engine),
):
    ensure_database_ready()

    try:
        appointments, total = engine.store.search(
            page=page,
            limit=limit,
            start_from=start_from,
            end_until=end_until,
            status_id=status_id,
            professional_id=professional_id,
            service_type_id=service_type_id,
            patient_id=patient_id,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    return AppointmentListResponse(
        data=[to_appointment_response(appointment) for appointment in appointments],
        pagination=PaginationResponse(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get('/calendar/view', response_model=list[CalendarEntryResponse])
def calendar_view(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    professional_id: int | None = Query(default=None, ge=1),
    engine: AppointmentEngine = Depends(get_appointment_engine),
):
    ensure_database_ready()

    try:
        entries = engine.list_for_calendar(start, end, professional_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    return [CalendarEntryResponse.model_validate(entry) for entry in entries]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, engine: AppointmentEngine = Depends(get_appointment_engine)):
    ensure_database_ready()

    try:
        appointment = engine.store.load_by_id(appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

    return to_appointment_response(appointment)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    engine: AppointmentEngine = Depends(get_appointment_engine),
):
    ensure_database_ready()

    try:
        result = engine.book(
            patient_id=data.patient_id,
            professional_id=data.professional_id,
            start=data.start_time,
            end=data.end_time,
            service_type_id=data.service_type_id,
            notes=data.notes,
            acting_user_id=current_user.id,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    return to_appointment_response(raise_for_result(result))


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    engine: AppointmentEngine = Depends(get_appointment_engine),
):
    ensure_database_ready()

    try:
        result = engine.reschedule(
            appointment_id,
            data,
            acting_user_id=current_user.id,
            acting_user_role=current_user.role_id,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    return to_appointment_response(raise_for_result(result))


@router.delete('/{appointment_id}', response_model=MessageResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    engine: AppointmentEngine = Depends(get_appointment_engine),
):
    ensure_database_ready()

    try:
        result = engine.cancel(appointment_id, acting_user_id=current_user.id)
    except SQLAlchemyError as exc:
        raise database_unavailable(engine) from exc

    raise_for_result(result)
    return MessageResponse(message='Appointment cancelled successfully.')
