import logging
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import UnauthenticatedError
from models import User

logger = logging.getLogger(__name__)

TOKEN_SALT = "access-token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt=TOKEN_SALT)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def issue_token(user_id: int) -> str:
    return _serializer().dumps({"u": user_id})


def read_token(token: str, max_age_hours: Optional[int] = None) -> int:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise UnauthenticatedError("Session expired") from exc
    except BadSignature as exc:
        raise UnauthenticatedError("Invalid credentials") from exc

    user_id = data.get("u") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise UnauthenticatedError("Invalid credentials")
    return user_id


def resolve_user_id(session: Session, token: Optional[str]) -> int:
    """Turn a bearer token into the id of an existing user, or fail closed."""
    if not token:
        raise UnauthenticatedError("Not authenticated")
    user_id = read_token(token)
    if session.get(User, user_id) is None:
        logger.info(f"auth_rejected: reason=unknown_user user_id={user_id}")
        raise UnauthenticatedError("Invalid credentials")
    return user_id


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get("session")


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> int:
    try:
        return resolve_user_id(db, _bearer_token(request))
    except UnauthenticatedError:
        logger.info(f"auth_rejected: path={request.url.path}")
        raise
