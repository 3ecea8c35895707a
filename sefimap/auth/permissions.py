from fastapi import Depends, HTTPException, status

from sefimap.auth.dependencies import get_current_user
from sefimap.auth.models import AdminUser


def require_role(*roles: str):
    def wrapper(user: AdminUser = Depends(get_current_user)) -> AdminUser:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Accès interdit (rôle requis)"
            )
        return user
    return wrapper
