from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer

from rbac_console.domain.permissions import SUPER_ADMIN_ROLE
from rbac_console.infra.auth import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def has_role(claims: dict[str, Any], role: str) -> bool:
    roles = claims.get("roles")
    return isinstance(roles, list) and role in roles


def require_role(role: str) -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _checker(
        claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    ) -> dict[str, Any]:
        if not has_role(claims, role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing role: {role}",
            )
        return claims

    return _checker


require_admin = require_role(SUPER_ADMIN_ROLE)


@dataclass(frozen=True)
class ListQuery:
    """``?sort=field:order&filter=text`` on list endpoints."""

    sort: str | None = None
    filter_text: str | None = None


def get_list_query(
    sort: Annotated[str | None, Query(description="field:asc or field:desc")] = None,
    filter_text: Annotated[str | None, Query(alias="filter")] = None,
) -> ListQuery:
    return ListQuery(sort=sort, filter_text=filter_text)


Listing = Annotated[ListQuery, Depends(get_list_query)]
