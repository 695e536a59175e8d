from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from mathquiz.core.security import get_controller, get_current_user
from mathquiz.schemas.action import ActionResult
from mathquiz.schemas.user import User, UserData
from mathquiz.services.session_controller import SessionController

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class MeResponse(BaseModel):
    id: str
    name: str
    email: str | None
    role: str
    child_id: str | None


class StudentOption(BaseModel):
    id: str
    name: str


class StudentsResponse(BaseModel):
    items: list[StudentOption]


@router.post("/login", response_model=ActionResult)
async def login(body: LoginRequest, controller: SessionController = Depends(get_controller)):
    result = await controller.login(body.email.strip(), body.password)
    if not result.success:
        raise HTTPException(status_code=401, detail={"error_code": "login_failed", "error_message": result.message})
    return result


@router.post("/signup", response_model=ActionResult)
async def signup(body: UserData, response: Response, controller: SessionController = Depends(get_controller)):
    result = await controller.sign_up(body)
    if result.success:
        return result

    account_created = any(s.name == "create_account" and s.ok for s in result.steps)
    # 207: the account exists but a follow-up write failed.
    response.status_code = 207 if account_created else 400
    return result


@router.post("/logout", response_model=ActionResult)
async def logout(controller: SessionController = Depends(get_controller)):
    result = await controller.logout()
    if not result.success:
        raise HTTPException(status_code=502, detail={"error_code": "logout_failed", "error_message": result.message})
    return result


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "child_id": user.child_id,
    }


@router.get("/students", response_model=StudentsResponse)
async def students(controller: SessionController = Depends(get_controller)):
    # Public: the parent sign-up form picks the child from this list.
    items = await controller.list_students()
    return {"items": [{"id": s.id, "name": s.name} for s in items]}
