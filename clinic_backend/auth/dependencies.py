from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinic_backend.auth import jwt_handler
from clinic_backend.core import config
from clinic_backend.database import get_db
from clinic_backend.models.user import User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.get(User, int(subject))
    if user is None or not user.active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def require_role(*role_ids: int):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role_id not in role_ids:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return dependency


require_admin = require_role(config.ADMIN_ROLE_ID)
