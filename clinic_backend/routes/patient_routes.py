import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user, require_admin
from clinic_backend.database import DATABASE_UNAVAILABLE_DETAIL, get_db
from clinic_backend.models.appointment import Appointment
from clinic_backend.models.patient import Patient
from clinic_backend.models.user import User
from clinic_backend.schemas.appointment import (
    AppointmentListResponse,
    MessageResponse,
    PaginationResponse,
    to_appointment_response,
)
from clinic_backend.schemas.patient import (
    CreatePatientRequest,
    PatientDetailResponse,
    PatientListResponse,
    PatientResponse,
    UpdatePatientRequest,
)
from clinic_backend.services.appointment_store import SqlAppointmentStore

router = APIRouter(tags=['patients'], dependencies=[Depends(get_current_user)])

logger = logging.getLogger(__name__)

RECENT_APPOINTMENTS_LIMIT = 10


def database_unavailable(db: Session) -> HTTPException:
    logger.exception('Patient database operation failed')
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def get_patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Patient not found.')
    return patient


def ensure_document_available(db: Session, document: str, patient_id: int | None = None) -> None:
    query = db.query(Patient.id).filter(Patient.document == document)
    if patient_id is not None:
        query = query.filter(Patient.id != patient_id)
    if query.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='A patient with this document already exists.',
        )


@router.get('', response_model=PatientListResponse)
def list_patients(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str | None = Query(default=None, max_length=100),
    db: Session = Depends(get_db),
):
    query = db.query(Patient)
    if search and search.strip():
        pattern = f'%{search.strip()}%'
        query = query.filter(
            or_(
                Patient.first_names.ilike(pattern),
                Patient.last_names.ilike(pattern),
                Patient.document.ilike(pattern),
            )
        )

    try:
        total = query.with_entities(func.count(Patient.id)).scalar() or 0
        patients = (
            query.order_by(Patient.first_names.asc(), Patient.last_names.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return PatientListResponse(
        data=[PatientResponse.model_validate(patient) for patient in patients],
        pagination=PaginationResponse(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get('/{patient_id}', response_model=PatientDetailResponse)
def get_patient(patient_id: int, db: Session = Depends(get_db)):
    try:
        patient = get_patient_or_404(db, patient_id)
        recent, _ = SqlAppointmentStore(db).search(page=1, limit=RECENT_APPOINTMENTS_LIMIT, patient_id=patient_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return PatientDetailResponse(
        patient=PatientResponse.model_validate(patient),
        recent_appointments=[to_appointment_response(appointment) for appointment in recent],
    )


@router.post('', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_patient(
    data: CreatePatientRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    now = datetime.now()
    try:
        ensure_document_available(db, data.document)
        patient = Patient(**data.model_dump(), updated_by=current_user.id, created_at=now, updated_at=now)
        db.add(patient)
        db.commit()
        db.refresh(patient)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Registered patient %s by user %s', patient.id, current_user.id)
    return PatientResponse.model_validate(patient)


@router.put('/{patient_id}', response_model=PatientResponse)
def update_patient(
    patient_id: int,
    data: UpdatePatientRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = data.changes()

    try:
        patient = get_patient_or_404(db, patient_id)
        if not changes:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No valid fields to update.')
        if 'document' in changes:
            ensure_document_available(db, changes['document'], patient_id)

        for name, value in changes.items():
            setattr(patient, name, value)
        patient.updated_by = current_user.id
        patient.updated_at = datetime.now()
        db.commit()
        db.refresh(patient)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Updated patient %s (%s) by user %s', patient_id, ', '.join(sorted(changes)), current_user.id)
    return PatientResponse.model_validate(patient)


@router.delete('/{patient_id}', response_model=MessageResponse)
def delete_patient(
    patient_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        patient = get_patient_or_404(db, patient_id)
        appointment_count = (
            db.query(func.count(Appointment.id)).filter(Appointment.patient_id == patient_id).scalar() or 0
        )
        if appointment_count:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Cannot delete patient with existing appointments.',
            )

        db.delete(patient)
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Deleted patient %s by user %s', patient_id, current_user.id)
    return MessageResponse(message='Patient deleted successfully.')


@router.get('/{patient_id}/appointments', response_model=AppointmentListResponse)
def list_patient_appointments(
    patient_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    try:
        get_patient_or_404(db, patient_id)
        appointments, total = SqlAppointmentStore(db).search(page=page, limit=limit, patient_id=patient_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return AppointmentListResponse(
        data=[to_appointment_response(appointment) for appointment in appointments],
        pagination=PaginationResponse(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )
