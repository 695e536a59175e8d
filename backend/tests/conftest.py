import sys
from pathlib import Path

import pytest
import pytest_asyncio

backend_dir = Path(__file__).resolve().parents[1]
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from mathquiz.core.scheduler import ManualScheduler
from mathquiz.db.session import make_engine, make_session_factory
from mathquiz.models.user import AuthIdentity, Profile, UserRole
from mathquiz.services.data import LocalDataService
from mathquiz.services.data.local import pwd_context
from mathquiz.services.session_controller import SessionController

PASSWORD = "testpass123"


@pytest.fixture()
def session_factory():
    # Every test gets its own in-memory database (StaticPool keeps it alive).
    engine = make_engine("sqlite+pysqlite:///:memory:")
    factory = make_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def data_service(session_factory):
    return LocalDataService(session_factory, secret_key="test-secret", algorithm="HS256", token_minutes=60)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def seed_account(session_factory):
    """Create an auth identity plus profile directly in the store.

    Returns the new user id. Pass `profile=False` for an identity that has no
    profile row.
    """

    def _seed(
        email: str,
        *,
        name: str | None = None,
        role: UserRole = UserRole.student,
        child_id: str | None = None,
        password: str = PASSWORD,
        profile: bool = True,
    ) -> str:
        with session_factory() as db:
            identity = AuthIdentity(
                email=email.lower(),
                password_hash=pwd_context.hash(password),
                user_metadata={"name": name or email.split("@")[0], "role": role.value},
            )
            db.add(identity)
            db.flush()
            if profile:
                db.add(Profile(id=identity.id, name=name or email.split("@")[0], role=role, child_id=child_id))
            db.commit()
            return identity.id

    return _seed


@pytest.fixture()
def seed_progress(data_service):
    async def _seed(user_id: str, operation: str, stage: int, score: int, total_time: float = 10.0):
        return await data_service.insert_progress(
            {"user_id": user_id, "operation": operation, "stage": stage, "score": score, "total_time": total_time}
        )

    return _seed


@pytest_asyncio.fixture()
async def controller(data_service, scheduler):
    ctrl = SessionController(data_service, scheduler=scheduler)
    await ctrl.start()
    yield ctrl
    await ctrl.close()


@pytest.fixture()
def client(data_service):
    from fastapi.testclient import TestClient

    from mathquiz.main import create_app

    app = create_app(SessionController(data_service))
    # Entering the client runs startup, which starts the controller.
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def login(client):
    def _login(email: str, password: str = PASSWORD):
        r = client.post("/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return r.json()

    return _login
