import hmac
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.api_keys import hash_api_key
from core.deps import get_db
from models.api_key import ApiKey


AUTH_MISSING_ERROR = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Missing authentication credentials",
)
AUTH_ERROR = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid authentication credentials",
)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    user_id: str
    is_admin: bool = False


def extract_api_key(
    request: Request,
    bearer: HTTPAuthorizationCredentials | None = None,
) -> str | None:
    if bearer and hasattr(bearer, "scheme") and bearer.scheme.lower() == "bearer" and bearer.credentials:
        return bearer.credentials.strip()
    authorization = request.headers.get("Authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
    x_api_key = request.headers.get("X-Api-Key")
    if x_api_key:
        return x_api_key.strip()
    return None


def _get_api_key_record(db: Session, presented_key_hash: str) -> ApiKey | None:
    return db.scalar(select(ApiKey).where(ApiKey.key_hash == presented_key_hash))


def resolve_caller_from_api_key(db: Session, raw_api_key: str) -> Caller:
    presented_hash = hash_api_key(raw_api_key)
    record = _get_api_key_record(db, presented_hash)
    if record is None:
        raise AUTH_ERROR
    if not hmac.compare_digest(record.key_hash, presented_hash):
        raise AUTH_ERROR
    if record.revoked_at is not None:
        raise AUTH_ERROR
    return Caller(user_id=record.user_id, is_admin=bool(record.is_admin))


def require_caller(
    request: Request,
    db: Session = Depends(get_db),
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Caller:
    raw_key = extract_api_key(request, bearer=bearer)
    if not raw_key:
        raise AUTH_MISSING_ERROR
    caller = resolve_caller_from_api_key(db, raw_key)
    request.state.user_id = caller.user_id
    return caller
