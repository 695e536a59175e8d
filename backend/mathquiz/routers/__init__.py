from mathquiz.routers import admin, auth, health, me, progress, quizzes

__all__ = [
    "admin",
    "auth",
    "health",
    "me",
    "progress",
    "quizzes",
]
