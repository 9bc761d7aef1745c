from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from . import config
from .access import AccessContext
from .repository import Repository, get_repository

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _require_secret() -> str:
    secret = config.get_jwt_secret()
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret


def create_access_token(data: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _require_secret(), algorithm=config.JWT_ALGORITHM)


def token_for(user: Dict[str, Any]) -> str:
    return create_access_token({"sub": user["id"], "role": user["role"]})


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    repository: Repository = Depends(get_repository),
) -> Dict[str, Any]:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token, authorization denied")
    secret = _require_secret()
    try:
        payload = jwt.decode(credentials.credentials, secret, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token is not valid")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token is not valid")
    user = await repository.find_by_id("user", user_id)
    if not user or not user.get("active", True):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token is not valid")
    return user


def get_access(current_user: Dict[str, Any] = Depends(get_current_user)) -> AccessContext:
    return AccessContext(role=current_user.get("role", ""), owner_id=current_user.get("id"))


def require_roles(*roles: str):
    def dependency(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        return current_user

    return dependency
