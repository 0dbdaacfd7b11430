from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, FastAPI, HTTPException, Request, status

PRINCIPAL_ID_HEADER = 'x-principal-id'
PRINCIPAL_ROLE_HEADER = 'x-principal-role'


class Role(str, Enum):
    ADMIN = 'ADMIN'
    PARTS_MANAGER = 'PARTS_MANAGER'
    SHOP_MANAGER = 'SHOP_MANAGER'
    TECHNICIAN = 'TECHNICIAN'
    SERVICE_ADVISOR = 'SERVICE_ADVISOR'


INVENTORY_MANAGERS = (Role.ADMIN, Role.PARTS_MANAGER)
STOCK_MOVERS = (Role.ADMIN, Role.PARTS_MANAGER, Role.SHOP_MANAGER)
WORK_ORDER_ROLES = (Role.ADMIN, Role.PARTS_MANAGER, Role.SHOP_MANAGER, Role.TECHNICIAN, Role.SERVICE_ADVISOR)


@dataclass
class Principal:
    id: str
    role: Role


def principal_from_headers(request: Request) -> Principal | None:
    principal_id = (request.headers.get(PRINCIPAL_ID_HEADER) or '').strip()
    raw_role = (request.headers.get(PRINCIPAL_ROLE_HEADER) or '').strip().upper()
    if not principal_id or not raw_role:
        return None
    try:
        role = Role(raw_role)
    except ValueError:
        return None
    return Principal(id=principal_id[:64], role=role)


def install_principal_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def principal_middleware(request: Request, call_next):
        request.state.principal = principal_from_headers(request)
        return await call_next(request)


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
