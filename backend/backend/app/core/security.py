from __future__ import annotations

import enum
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from app.core.errors import Forbidden, NotFound, Unauthenticated
from app.core.tenant import TenantContext, get_tenant_id

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_TTL_MIN = int(os.getenv("JWT_TTL_MIN", "30"))  # 30m default

IAM_ISSUER = os.getenv("IAM_ISSUER", "enterprise-iam")
IAM_AUDIENCE = os.getenv("IAM_AUDIENCE", "enterprise-core")


class Capability(str, enum.Enum):
    VIEW_STANDARD_COSTS = "view:standard_costs"
    MANAGE_STANDARD_COSTS = "manage:standard_costs"
    VIEW_COST_VARIANCES = "view:cost_variances"
    VIEW_COST_REVALUATIONS = "view:cost_revaluations"
    MANAGE_COST_REVALUATIONS = "manage:cost_revaluations"
    APPROVE_COST_REVALUATIONS = "approve:cost_revaluations"


_VIEW = frozenset({
    Capability.VIEW_STANDARD_COSTS,
    Capability.VIEW_COST_VARIANCES,
    Capability.VIEW_COST_REVALUATIONS,
})

# Role -> capabilities. Accountants raise revaluations, only managers approve them.
ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "VIEWER": _VIEW,
    "ACCOUNTANT": _VIEW | {Capability.MANAGE_COST_REVALUATIONS},
    "MANAGER": _VIEW | {
        Capability.MANAGE_STANDARD_COSTS,
        Capability.MANAGE_COST_REVALUATIONS,
        Capability.APPROVE_COST_REVALUATIONS,
    },
    "ADMIN": frozenset(Capability),
}


def check_capability(role: str, capability: Capability | str) -> bool:
    """Authorization gate: does ``role`` carry ``capability``?"""
    caps = ROLE_CAPABILITIES.get((role or "").upper())
    if not caps:
        return False
    if isinstance(capability, str) and capability in Capability.__members__:
        capability = Capability[capability]
    try:
        return Capability(capability) in caps
    except ValueError:
        return False


@dataclass
class Grant:
    role: str
    perms: list[str] = field(default_factory=list)


@dataclass
class Principal:
    user_id: str | None = None
    username: str = "anonymous"
    tenant_id: str = "default"
    grants: list[Grant] | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    def has_permission(self, perm: Capability | str) -> bool:
        value = perm.value if isinstance(perm, Capability) else perm
        for g in (self.grants or []):
            if value in (g.perms or []):
                return True
            if check_capability(g.role, value):
                return True
        return False


def authorize(principal: Principal | None, capability: Capability) -> Principal:
    """Raise unless the principal is authenticated and holds ``capability``."""
    if principal is None or not principal.is_authenticated:
        raise Unauthenticated("Not authenticated")
    if not principal.has_permission(capability):
        raise Forbidden(f"Missing capability {capability.name}")
    return principal


def authorize_tenant(principal: Principal | None, tenant: TenantContext, capability: Capability) -> Principal:
    """Authorize, then require the principal to belong to ``tenant``.

    A foreign tenant is reported as not found so its existence never leaks.
    """
    principal = authorize(principal, capability)
    if principal.tenant_id != tenant.id:
        raise NotFound("Organization not found")
    return principal


def _make_jti() -> str:
    return secrets.token_urlsafe(16)


def create_access_token(
    user_id: str,
    *,
    email: str,
    tenant_id: str,
    grants: Iterable[Grant],
    ttl_minutes: int | None = None,
) -> str:
    """Mint an access token in the shape ``get_principal`` accepts."""
    now = datetime.now(timezone.utc)
    payload = {
        "iss": IAM_ISSUER,
        "aud": IAM_AUDIENCE,
        "jti": _make_jti(),
        "sub": user_id,
        "tid": tenant_id,
        "email": email,
        "grants": [{"role": g.role, "perms": list(g.perms)} for g in grants],
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_minutes or JWT_TTL_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Principal:
    if not creds or not creds.credentials:
        # Anonymous
        return Principal(user_id=None, username="anonymous", tenant_id=get_tenant_id(), grants=[])

    try:
        payload = jwt.decode(
            creds.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALG],
            audience=IAM_AUDIENCE,
            issuer=IAM_ISSUER,
        )
    except JWTError:
        return Principal(user_id=None, username="anonymous", tenant_id=get_tenant_id(), grants=[])

    grants: list[Grant] = []
    for g in payload.get("grants") or []:
        if not isinstance(g, dict):
            continue
        grants.append(Grant(role=str(g.get("role")), perms=list(g.get("perms") or [])))
    return Principal(
        user_id=payload.get("sub"),
        username=payload.get("email") or "unknown",
        tenant_id=payload.get("tid") or get_tenant_id(),
        grants=grants,
    )
