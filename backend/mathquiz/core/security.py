from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from mathquiz.models.user import UserRole
from mathquiz.schemas.user import User
from mathquiz.services.session_controller import SessionController


def get_controller(request: Request) -> SessionController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="session controller not started")
    return controller


def get_current_user(request: Request, controller: SessionController = Depends(get_controller)) -> User:
    user = controller.current_user
    if user is None:
        raise HTTPException(status_code=401, detail="not authenticated")

    try:
        request.state.user_id = str(user.id)
    except Exception:
        pass
    return user


def require_roles(*roles: UserRole):
    def _dep(user: User = Depends(get_current_user)) -> User:
        # Admin passes every role check; other roles only where listed.
        if user.role == UserRole.admin:
            return user

        if user.role not in roles:
            raise HTTPException(status_code=403, detail="forbidden")
        return user

    return _dep
