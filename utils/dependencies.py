import logging
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from database import get_db
from errors import (
    AuthorizationError,
    InactiveAccountError,
    InvalidCredentialError,
    MissingCredentialError,
    StaleIdentityError,
)
from utils.security import decode_access_token

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)) -> dict:
    if not token:
        raise MissingCredentialError()

    try:
        payload = decode_access_token(token)
        user_id: str = payload.get("sub")
        if user_id is None:
            raise InvalidCredentialError()
        user_obj_id = ObjectId(user_id)
    except (JWTError, InvalidId, TypeError):
        raise InvalidCredentialError()

    user = await db.users.find_one({"_id": user_obj_id})
    if user is None:
        logger.warning("Token presented for deleted user %s", user_id)
        raise StaleIdentityError()
    if not user.get("is_active", True):
        raise InactiveAccountError()

    return {
        "id": str(user["_id"]),
        "membership_id": user["membership_id"],
        "role": user.get("role", "user"),
        "name": user.get("name", ""),
    }


async def admin_required(current_user: dict = Depends(get_current_user)) -> dict:
    if current_user.get("role") != "admin":
        raise AuthorizationError()
    return current_user


def ensure_self_or_admin(current_user: dict, owner_id, message: str = "Access denied") -> None:
    if current_user.get("role") != "admin" and current_user["id"] != str(owner_id):
        raise AuthorizationError(message)
