# deps/authz.py
from fastapi import Depends

from deps.auth import get_current_caller
from exceptions import ForbiddenError
from services.audit import Caller


def require_role(*roles: str):
    def dep(caller: Caller = Depends(get_current_caller)) -> Caller:
        if caller.role not in roles:
            need = ", ".join(roles)
            raise ForbiddenError(f"Need any of: {need}")
        return caller
    return dep


require_superadmin = require_role("superadmin")
