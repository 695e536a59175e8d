from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from mathquiz.core.security import get_controller, get_current_user
from mathquiz.schemas.quiz import (
    OperationOption,
    QuizAnswerRequest,
    QuizAnswerResponse,
    QuizOptionsResponse,
    QuizProgress,
    QuizSettings,
    QuizSummary,
)
from mathquiz.schemas.user import User
from mathquiz.services.question_generator import OPERATIONS, TIMER_OPTIONS
from mathquiz.services.session_controller import SessionController

router = APIRouter(prefix="/quizzes", tags=["quizzes"])

# Quiz timers live on the event loop, so handlers that touch the session are async.


@router.get("/options", response_model=QuizOptionsResponse)
def options(_: User = Depends(get_current_user)):
    return {
        "operations": [OperationOption(operation=op, name=info.name, stages=info.stages) for op, info in OPERATIONS.items()],
        "timers": list(TIMER_OPTIONS),
    }


@router.post("/start", response_model=QuizProgress)
async def start(
    body: QuizSettings,
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    info = OPERATIONS.get(body.operation)
    if info is None or body.stage > info.stages:
        raise HTTPException(status_code=422, detail={"error_code": "invalid_stage", "error_message": "unknown stage"})
    quiz = controller.start_quiz(body)
    return quiz.progress()


@router.post("/answer", response_model=QuizAnswerResponse)
async def answer(
    body: QuizAnswerRequest,
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    result = controller.submit_answer(body.answer)
    quiz = controller.quiz
    return {
        "accepted": result is not None,
        "result": result,
        "quiz": quiz.progress() if quiz is not None else None,
    }


@router.post("/exit")
async def exit_quiz(
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    controller.exit_quiz()
    return {"ok": True, "view": controller.view.value}


@router.get("/current", response_model=QuizProgress)
async def current(
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    if controller.quiz is None:
        raise HTTPException(status_code=404, detail="no active quiz")
    return controller.quiz.progress()


@router.get("/results", response_model=QuizSummary)
def results(
    _: User = Depends(get_current_user),
    controller: SessionController = Depends(get_controller),
):
    if controller.quiz_summary is None:
        raise HTTPException(status_code=404, detail="no results")
    return controller.quiz_summary
