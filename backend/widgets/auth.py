from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.widgets.settings import Settings

# Operator auth for maintenance routes. Widget owners never use this; they
# prove control of a target with its owner token instead.
security = HTTPBearer(auto_error=False)
OPERATOR_ROLE = "admin"


@dataclass(frozen=True)
class OperatorContext:
    user_id: str
    roles: set[str]


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _local_operator() -> OperatorContext:
    return OperatorContext(user_id="dev-local", roles={OPERATOR_ROLE})


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def get_operator_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> OperatorContext:
    settings = get_settings(request)
    if not settings.auth_enabled:
        return _local_operator()

    if not credentials or credentials.scheme.lower() != "bearer":
        raise _unauthorized("missing bearer token")

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("invalid auth token") from exc

    subject = payload.get("sub")
    roles = payload.get("roles", [])
    if not isinstance(subject, str) or not subject.strip():
        raise _unauthorized("token missing subject")
    if not isinstance(roles, list):
        raise _unauthorized("token roles must be a list")
    return OperatorContext(
        user_id=subject.strip(),
        roles={str(role).strip() for role in roles if str(role).strip()},
    )


def require_operator(
    context: OperatorContext = Depends(get_operator_context),
) -> OperatorContext:
    if OPERATOR_ROLE not in context.roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{OPERATOR_ROLE} role required",
        )
    return context
