from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Make `mathquiz` importable when run as `python backend/scripts/seed_local_users.py`.
sys.path.append(str(Path(__file__).resolve().parents[1]))
sys.path.append(os.getcwd())

from sqlalchemy import select

from mathquiz.core.config import settings
from mathquiz.db.session import make_engine, make_session_factory
from mathquiz.models.user import AuthIdentity, Profile, UserRole
from mathquiz.services.data.local import pwd_context


def ensure_account(db, *, email: str, name: str, role: UserRole, password: str, child_id: str | None = None) -> str:
    email = email.strip().lower()
    identity = db.scalar(select(AuthIdentity).where(AuthIdentity.email == email))
    if identity is None:
        identity = AuthIdentity(
            email=email,
            password_hash=pwd_context.hash(password),
            user_metadata={"name": name, "role": role.value},
        )
        db.add(identity)
        db.flush()

    profile = db.get(Profile, identity.id)
    if profile is None:
        db.add(Profile(id=identity.id, name=name, role=role, child_id=child_id))
    elif child_id and not profile.child_id:
        profile.child_id = child_id
    db.flush()
    return identity.id


def main() -> None:
    parser = argparse.ArgumentParser(description="Create demo accounts in the local MathQuiz database")
    parser.add_argument("--database-url", default=settings.local_database_url)
    parser.add_argument("--password", default=os.environ.get("MATHQUIZ_SEED_PASSWORD", "mathquiz"))
    parser.add_argument("--domain", default="example.com")
    args = parser.parse_args()

    if len(args.password) < 6:
        parser.error("password must be at least 6 characters")

    factory = make_session_factory(make_engine(args.database_url))
    with factory() as db:
        ensure_account(db, email=f"admin@{args.domain}", name="Admin", role=UserRole.admin, password=args.password)
        ensure_account(db, email=f"teacher@{args.domain}", name="Teacher", role=UserRole.teacher, password=args.password)
        student_id = ensure_account(
            db, email=f"student@{args.domain}", name="Student", role=UserRole.student, password=args.password
        )
        ensure_account(
            db,
            email=f"parent@{args.domain}",
            name="Parent",
            role=UserRole.parent,
            password=args.password,
            child_id=student_id,
        )
        db.commit()

    print(f"Accounts created/ensured in {args.database_url}:")
    for role in ("admin", "teacher", "student", "parent"):
        print(f"  {role}: {role}@{args.domain} / {args.password}")


if __name__ == "__main__":
    main()
