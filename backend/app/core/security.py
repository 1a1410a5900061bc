"""
Security and Authentication for SafeCircle API.

Tokens are issued by the external identity provider; this module only
validates them and maps the role claim onto scopes. ``sub`` is the stable
user id used everywhere else in the system.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, List

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, SecurityScopes
from jose import JWTError, jwt
from pydantic import BaseModel

from backend.app.core.config import get_settings
from backend.app.core.logging import user_id_ctx

settings = get_settings()

# Incident scopes
INCIDENT_READ = "incident:read"
INCIDENT_WRITE = "incident:write"

# Location scopes
LOCATION_READ = "location:read"
LOCATION_WRITE = "location:write"

# Place scopes
PLACE_READ = "place:read"
PLACE_WRITE = "place:write"

# Operator console scopes
OPERATOR_CONSOLE = "operator:console"

# SLA scopes
SLA_READ = "sla:read"
SLA_WRITE = "sla:write"
SLA_ADMIN = "sla:admin"

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="api/v1/auth/token",
    scopes={
        INCIDENT_READ: "Read incidents, location history and acknowledgements",
        INCIDENT_WRITE: "Trigger, acknowledge, resolve and cancel incidents",
        LOCATION_READ: "Read family live locations",
        LOCATION_WRITE: "Share own live location",
        PLACE_READ: "Read family places",
        PLACE_WRITE: "Create, update and delete family places",
        OPERATOR_CONSOLE: "Operate the call-centre incident queue",
        SLA_READ: "Read SLA status, breaches and metrics",
        SLA_WRITE: "Register interactions, record responses, run sweeps",
        SLA_ADMIN: "Manage SLA policies and business hours",
    },
)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """
    Generate a signed JWT token (used by tests and local tooling).
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


# Role definitions
class Role:
    ADMIN = "admin"
    OPERATOR = "operator"
    MEMBER = "member"
    AGENT = "agent"  # Support desk: works conversations through the SLA API

_MEMBER_SCOPES = [
    INCIDENT_READ, INCIDENT_WRITE, LOCATION_READ, LOCATION_WRITE, PLACE_READ, PLACE_WRITE,
]

ROLE_SCOPES = {
    Role.ADMIN: _MEMBER_SCOPES + [OPERATOR_CONSOLE, SLA_READ, SLA_WRITE, SLA_ADMIN],
    Role.OPERATOR: _MEMBER_SCOPES + [OPERATOR_CONSOLE, SLA_READ, SLA_WRITE],
    Role.AGENT: [SLA_READ, SLA_WRITE],
    Role.MEMBER: _MEMBER_SCOPES,
}

# Roles that may act on any incident regardless of family membership
STAFF_ROLES = {Role.ADMIN, Role.OPERATOR}


class User(BaseModel):
    id: str
    role: str
    scopes: List[str] = []

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def get_current_user(
    security_scopes: SecurityScopes,
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    Validate JWT token and check required scopes based on Role-Based Access Control.
    """
    if security_scopes.scopes:
        authenticate_value = f'Bearer scope="{security_scopes.scope_str}"'
    else:
        authenticate_value = "Bearer"

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": authenticate_value},
    )

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm]
        )
    except JWTError:
        raise credentials_exception

    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    role: str = payload.get("role", Role.MEMBER)
    # Assign scopes based on role if not present in token
    token_scopes = payload.get("scopes", ROLE_SCOPES.get(role, []))

    for scope in security_scopes.scopes:
        if scope not in token_scopes:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not enough permissions. Required scope: {scope}",
                headers={"WWW-Authenticate": authenticate_value},
            )

    user_id_ctx.set(user_id)
    return User(id=user_id, role=role, scopes=token_scopes)
