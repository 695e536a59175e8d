from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from mathquiz.core.security import get_controller, get_current_user
from mathquiz.schemas.me import (
    AdminDashboard,
    ParentDashboard,
    SetViewRequest,
    StateResponse,
    StudentDashboard,
    TeacherDashboard,
)
from mathquiz.schemas.user import User
from mathquiz.services.dashboards import dashboard_for
from mathquiz.services.navigation import resolve_screen
from mathquiz.services.session_controller import SessionController

router = APIRouter(prefix="/me", tags=["me"])


@router.get("/state", response_model=StateResponse)
async def my_state(controller: SessionController = Depends(get_controller)):
    # Readable while signed out: the login and sign-up screens render from it.
    state = controller.snapshot()
    return {"screen": resolve_screen(state), "state": state}


@router.post("/view", response_model=StateResponse)
async def set_view(body: SetViewRequest, controller: SessionController = Depends(get_controller)):
    if not controller.set_view(body.view):
        raise HTTPException(
            status_code=409,
            detail={"error_code": "navigation_rejected", "error_message": f"cannot open {body.view.value} now"},
        )
    state = controller.snapshot()
    return {"screen": resolve_screen(state), "state": state}


@router.get(
    "/dashboard",
    response_model=StudentDashboard | TeacherDashboard | ParentDashboard | AdminDashboard,
)
async def my_dashboard(
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    return dashboard_for(controller.snapshot())
