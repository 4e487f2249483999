import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user, require_admin
from clinic_backend.auth.passwords import hash_password
from clinic_backend.core import config
from clinic_backend.database import DATABASE_UNAVAILABLE_DETAIL, get_db
from clinic_backend.models.user import User
from clinic_backend.schemas.appointment import MessageResponse, PaginationResponse
from clinic_backend.schemas.user import CreateUserRequest, UpdateUserRequest, UserListResponse, UserResponse

router = APIRouter(tags=['users'], dependencies=[Depends(get_current_user)])

logger = logging.getLogger(__name__)

ADMIN_ONLY_FIELDS = {'role_id', 'active'}


def database_unavailable(db: Session) -> HTTPException:
    logger.exception('User database operation failed')
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def is_admin(user: User) -> bool:
    return user.role_id == config.ADMIN_ROLE_ID


def ensure_self_or_admin(current_user: User, user_id: int) -> None:
    if not is_admin(current_user) and current_user.id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied.')


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')
    return user


def ensure_document_available(db: Session, document: str, user_id: int | None = None) -> None:
    query = db.query(User.id).filter(User.document == document)
    if user_id is not None:
        query = query.filter(User.id != user_id)
    if query.first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='A user with this document already exists.')


@router.get('', response_model=UserListResponse)
def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str | None = Query(default=None, max_length=100),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(User)
    if search and search.strip():
        pattern = f'%{search.strip()}%'
        query = query.filter(
            or_(User.first_names.ilike(pattern), User.last_names.ilike(pattern), User.document.ilike(pattern))
        )

    try:
        total = query.with_entities(func.count(User.id)).scalar() or 0
        users = (
            query.order_by(User.first_names.asc(), User.last_names.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return UserListResponse(
        data=[UserResponse.model_validate(user) for user in users],
        pagination=PaginationResponse(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get('/{user_id}', response_model=UserResponse)
def get_user(user_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ensure_self_or_admin(current_user, user_id)

    try:
        user = get_user_or_404(db, user_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return UserResponse.model_validate(user)


@router.post('', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    data: CreateUserRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    now = datetime.now()
    values = data.model_dump(exclude={'password'})

    try:
        ensure_document_available(db, data.document)
        user = User(
            **values,
            hashed_password=hash_password(data.password),
            active=True,
            updated_by=current_user.id,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Created user %s with role %s by user %s', user.id, user.role_id, current_user.id)
    return UserResponse.model_validate(user)


@router.put('/{user_id}', response_model=UserResponse)
def update_user(
    user_id: int,
    data: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(current_user, user_id)

    changes = data.changes()
    if ADMIN_ONLY_FIELDS & changes.keys() and not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only administrators can change roles or status.',
        )
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='No valid fields to update.')
    if 'password' in changes:
        changes['hashed_password'] = hash_password(changes.pop('password'))
    changed_fields = ', '.join(sorted(changes))

    try:
        user = get_user_or_404(db, user_id)
        if 'document' in changes:
            ensure_document_available(db, changes['document'], user_id)

        for name, value in changes.items():
            setattr(user, name, value)
        user.updated_by = current_user.id
        user.updated_at = datetime.now()
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Updated user %s (%s) by user %s', user_id, changed_fields, current_user.id)
    return UserResponse.model_validate(user)


@router.delete('/{user_id}', response_model=MessageResponse)
def deactivate_user(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Cannot delete your own account.')

    try:
        user = get_user_or_404(db, user_id)
        user.active = False
        user.updated_by = current_user.id
        user.updated_at = datetime.now()
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    logger.info('Deactivated user %s by user %s', user_id, current_user.id)
    return MessageResponse(message='User deactivated successfully.')
