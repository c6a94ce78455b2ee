from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from petchat.database.connection import mongo_db_dependency
from petchat.exceptions import Unauthorized
from petchat.repositories.user_repository import UserRepository
from petchat.schemas.user import TokenPayload
from petchat.services.gateway import MessagingGateway
from petchat.utils.security import decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


async def user_from_token(token: Optional[str], db) -> dict:
    """Resolve a bearer token to an existing user, or raise ``Unauthorized``."""
    if not token:
        raise Unauthorized()
    try:
        payload = TokenPayload.model_validate(decode_access_token(token))
    except (jwt.PyJWTError, ValidationError):
        raise Unauthorized("Invalid token")
    user = await UserRepository(db).get_user_by_id(payload.sub)
    if user is None:
        raise Unauthorized("Unknown user")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db = Depends(mongo_db_dependency),
) -> dict:
    return await user_from_token(credentials.credentials if credentials else None, db)


def get_gateway(request: Request) -> MessagingGateway:
    return request.app.state.gateway
