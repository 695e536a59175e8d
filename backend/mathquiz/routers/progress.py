from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from mathquiz.core.security import get_controller, get_current_user, require_roles
from mathquiz.models.user import UserRole
from mathquiz.schemas.progress import ProgressIndexResponse, StudentProgressResponse
from mathquiz.schemas.user import User
from mathquiz.services.progress import student_progress
from mathquiz.services.session_controller import SessionController

router = APIRouter(prefix="/progress", tags=["progress"])


def _linked_child_id(user: User, controller: SessionController) -> str | None:
    row = next((u for u in controller.users if u.id == user.id), None)
    return (row.child_id if row is not None else None) or user.child_id


@router.get("", response_model=ProgressIndexResponse)
def progress_index(
    _: User = Depends(require_roles(UserRole.teacher)),
    controller: SessionController = Depends(get_controller),
):
    return {"items": controller.progress}


@router.get("/{student_id}", response_model=StudentProgressResponse)
def progress_for_student(
    student_id: str,
    user: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    allowed = (
        user.role in (UserRole.admin, UserRole.teacher)
        or user.id == student_id
        or (user.role == UserRole.parent and _linked_child_id(user, controller) == student_id)
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="forbidden")

    return {"student_id": student_id, "operations": student_progress(controller.progress, student_id)}
