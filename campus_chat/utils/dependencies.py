import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from campus_chat.config import get_settings
from campus_chat.database.connection import mongo_db_dependency
from campus_chat.repositories.profile_repository import ProfileRepository
from campus_chat.schemas.profile import TokenPayload
from campus_chat.services.chat_service import ChatService, build_chat_service
from campus_chat.utils.realtime_bus import get_bus
from campus_chat.utils.security import decode_access_token


logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


async def resolve_user(token: str, db) -> dict:
    """Map an access token to the caller's profile or raise 401."""
    try:
        claims = TokenPayload.model_validate(decode_access_token(token))
    except (jwt.PyJWTError, ValidationError) as exc:
        logger.info("token_rejected", error=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    profile = await ProfileRepository(db).get_profile(claims.sub)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return profile


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db=Depends(mongo_db_dependency),
) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await resolve_user(credentials.credentials, db)


async def get_chat_service(db=Depends(mongo_db_dependency)) -> ChatService:
    return build_chat_service(db, await get_bus(), get_settings())
