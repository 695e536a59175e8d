from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from mathquiz.core.security import get_controller, require_roles
from mathquiz.models.user import UserRole
from mathquiz.schemas.action import ActionResult
from mathquiz.schemas.admin import UserUpdateRequest, UsersListResponse
from mathquiz.schemas.user import User, UserData
from mathquiz.services.session_controller import SessionController

router = APIRouter(prefix="/admin", tags=["admin"])


def _raise_for(result: ActionResult, *, status_code: int = 400) -> None:
    if result.success:
        return
    raise HTTPException(status_code=status_code, detail={"error_code": "action_failed", "error_message": result.message})


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _: User = Depends(require_roles(UserRole.admin)),
    controller: SessionController = Depends(get_controller),
):
    items = list(controller.users)
    return {"items": items, "total": len(items)}


@router.post("/users", response_model=ActionResult)
async def add_user(
    body: UserData,
    _: User = Depends(require_roles(UserRole.admin)),
    controller: SessionController = Depends(get_controller),
):
    result = await controller.add_user(body)
    _raise_for(result)
    return result


@router.patch("/users/{user_id}", response_model=ActionResult)
async def update_user(
    user_id: str,
    body: UserUpdateRequest,
    _: User = Depends(require_roles(UserRole.admin)),
    controller: SessionController = Depends(get_controller),
):
    existing = next((u for u in controller.users if u.id == user_id), None)
    if existing is None:
        raise HTTPException(status_code=404, detail="user not found")

    updated = User(id=user_id, name=body.name, email=existing.email, role=body.role, child_id=body.child_id)
    result = await controller.update_user(updated)
    _raise_for(result)
    return result


@router.delete("/users/{user_id}", response_model=ActionResult)
async def delete_user(
    user_id: str,
    admin: User = Depends(require_roles(UserRole.admin)),
    controller: SessionController = Depends(get_controller),
):
    if user_id == admin.id:
        raise HTTPException(
            status_code=400,
            detail={"error_code": "self_delete", "error_message": "You cannot delete your own account."},
        )
    result = await controller.delete_user(user_id)
    # Partial deletes still changed the store; report them as a server-side failure.
    _raise_for(result, status_code=502)
    return result
