import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clinic_backend.auth import jwt_handler
from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.auth.lockout import LoginAttemptStore, get_login_attempt_store
from clinic_backend.auth.passwords import verify_password
from clinic_backend.database import get_db
from clinic_backend.models.user import User
from clinic_backend.schemas.appointment import MessageResponse
from clinic_backend.schemas.user import UserResponse

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    document: str
    password: str

    @field_validator('document', 'password')
    @classmethod
    def validate_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError('This field is required.')
        return value


class RefreshRequest(BaseModel):
    refresh_token: str


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = 'bearer'
    user: UserResponse


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'


def _client_host(request: Request) -> str:
    return request.client.host if request.client else 'unknown'


@router.post('/login', response_model=LoginResponse)
def login(
    data: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    attempts: LoginAttemptStore = Depends(get_login_attempt_store),
):
    document = data.document.strip()
    identifier = f'{document}-{_client_host(request)}'

    if attempts.is_locked(identifier):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail='Account temporarily locked due to too many failed attempts. Please try again later.',
        )

    user = db.query(User).filter(User.document == document).first()
    if user is None:
        attempts.record_failure(identifier)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

    if not user.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Account is inactive')

    if not verify_password(data.password, user.hashed_password):
        attempts.record_failure(identifier)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

    attempts.clear(identifier)
    logger.info('User %s logged in', user.id)

    return LoginResponse(
        access_token=jwt_handler.create_access_token(user.id, user.role_id),
        refresh_token=jwt_handler.create_refresh_token(user.id),
        user=UserResponse.model_validate(user),
    )


@router.post('/refresh', response_model=AccessTokenResponse)
def refresh(data: RefreshRequest, db: Session = Depends(get_db)):
    try:
        payload = jwt_handler.decode_token(data.refresh_token, expected_type=jwt_handler.REFRESH_TOKEN_TYPE)
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid refresh token') from exc

    subject = str(payload.get('sub') or '')
    user = db.get(User, int(subject)) if subject.isdigit() else None
    if user is None or not user.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='User not found or inactive')

    return AccessTokenResponse(access_token=jwt_handler.create_access_token(user.id, user.role_id))


@router.get('/me', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post('/logout', response_model=MessageResponse)
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client drops them.
    logger.info('User %s logged out', current_user.id)
    return MessageResponse(message='Logout successful')
