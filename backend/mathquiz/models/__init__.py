from mathquiz.models.user import AuthIdentity, Profile, UserRole
from mathquiz.models.attempt import ProgressRecord

__all__ = [
    "AuthIdentity",
    "Profile",
    "UserRole",
    "ProgressRecord",
]
