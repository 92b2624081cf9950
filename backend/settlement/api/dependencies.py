from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from settlement.core.security import OPERATOR_ROLES, decode_access_token


bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Operator:
    username: str
    role: str


def get_current_operator(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Operator:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
    username = payload.get("sub")
    if not username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return Operator(username=str(username), role=str(payload.get("role") or ""))


def require_operator(roles: Iterable[str] | None = None):
    allowed = set(roles or OPERATOR_ROLES)

    def _dependency(operator: Operator = Depends(get_current_operator)) -> Operator:
        if operator.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator role required")
        return operator

    return _dependency
