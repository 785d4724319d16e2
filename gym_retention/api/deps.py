"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from gym_retention.config import settings
from gym_retention.exceptions import ForbiddenError
from gym_retention.schemas.schemas import UserRole
from gym_retention.services.policy import Action, CurrentUser, can_attempt

# Tokens are issued by the platform auth service; tokenUrl only feeds OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


class TokenPayload(BaseModel):
    sub: str
    role: UserRole
    email: str | None = None
    exp: int | None = None


def get_current_user(token: str = Depends(oauth2_scheme)) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise credentials_exception

    return CurrentUser(id=token_data.sub, role=token_data.role, email=token_data.email)


def require(action: Action) -> Callable[..., CurrentUser]:
    """
    Dependency factory gating a route on the authorization policy.

    Owner-scoped actions pass here for members; the service re-checks once
    the resource owner is known.
    """
    def dependency(actor: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not can_attempt(actor, action):
            raise ForbiddenError(f"Role {actor.role.value} may not perform {action.value}")
        return actor

    return dependency
