import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from ..errors import PermissionDenied, ValidationError
from ..models import AuthLogin, AuthToken, PasswordUpdate, UserRecord, UserRegister
from ..repository import Repository, get_repository
from ..security import get_current_user, get_password_hash, token_for, verify_password
from .common import ensure_email_free

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthToken, status_code=status.HTTP_201_CREATED)
async def register(payload: UserRegister, repository: Repository = Depends(get_repository)):
    if payload.role == "admin":
        raise PermissionDenied("Admin accounts cannot self-register")
    await ensure_email_free(repository, payload.email)
    data = payload.model_dump(exclude={"password"})
    user = UserRecord(**data, password_hash=get_password_hash(payload.password))
    await repository.insert("user", {**user.model_dump(), "password_hash": user.password_hash})
    logger.info("Registered %s user %s", user.role, user.email)
    return AuthToken(access_token=token_for({"id": user.id, "role": user.role}))


@router.post("/login", response_model=AuthToken)
async def login(payload: AuthLogin, repository: Repository = Depends(get_repository)):
    email = payload.email.strip().lower()
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email required")
    user = await repository.find_one("user", {"email": email})
    if not user or not user.get("active", True) or not verify_password(payload.password, user.get("password_hash") or ""):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return AuthToken(access_token=token_for(user))


@router.get("/me", response_model=UserRecord)
async def get_me(current_user: Dict[str, Any] = Depends(get_current_user)):
    return current_user


@router.put("/password")
async def update_password(
    payload: PasswordUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    if not verify_password(payload.current_password, current_user.get("password_hash") or ""):
        raise ValidationError("Current password is incorrect")
    await repository.update("user", current_user["id"], {"password_hash": get_password_hash(payload.new_password)})
    return {"message": "Password updated successfully"}
