# tests/conftest.py
import itertools
import os
import tempfile
from datetime import timedelta

###############
# 0) Environment, before anything imports healpoints.config.settings
###############
_TMP_DIR = tempfile.mkdtemp(prefix="healpoints-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/app.db"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["STATUS_SWEEP_INTERVAL_SECONDS"] = "0"

import httpx  # noqa: E402
import pytest  # noqa: E402

from healpoints.core.auth import create_tokens_for_user  # noqa: E402
from healpoints.core.clock import clinic_today  # noqa: E402
from healpoints.db.base import create_all, get_engine, get_session_factory  # noqa: E402
from healpoints.db.models import DoctorModel, PatientModel, UserModel  # noqa: E402
from healpoints.services.notifier import ConnectionManager, NotificationDispatcher  # noqa: E402

_ids = itertools.count(1)


class FakeSocket:
    """Stands in for a starlette WebSocket; records every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.accepted = False
        self.fail = fail
        self.frames = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset")
        self.frames.append(data)

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["event"] == name]


###############
# 1) Database
###############
@pytest.fixture
async def engine(tmp_path):
    # file-backed so that two sessions really are two connections
    engine = await get_engine(f"sqlite+aiosqlite:///{tmp_path / 'healpoints.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return await get_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


###############
# 2) Push channel
###############
@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def dispatcher(connections):
    return NotificationDispatcher(connections, replay_limit=20)


@pytest.fixture
def fake_socket():
    return FakeSocket


###############
# 3) Users and dates
###############
@pytest.fixture
def make_user(session_factory):
    async def _make(role: str = "patient", name: str = None) -> UserModel:
        n = next(_ids)
        async with session_factory() as session:
            user = UserModel(
                email=f"{role}{n}@healpoints.io",
                # token-based tests never check the password
                password_hash="not-a-real-hash",
                role=role,
                name=name or f"{role.title()} {n}",
            )
            session.add(user)
            if role == "doctor":
                session.add(DoctorModel(user=user, specialization="Cardiology"))
            elif role == "patient":
                session.add(PatientModel(user=user))
            await session.commit()
            return user

    return _make


@pytest.fixture
def tomorrow():
    return clinic_today() + timedelta(days=1)


def actor(user: UserModel) -> dict:
    return {"user_id": user.id, "role": user.role}


@pytest.fixture
def as_actor():
    return actor


@pytest.fixture
def auth_headers():
    def _headers(user: UserModel) -> dict:
        tokens = create_tokens_for_user(user)
        return {"Authorization": f"Bearer {tokens.access_token}"}

    return _headers


###############
# 4) HTTP client (lifespan is not run by ASGITransport, so state is wired here)
###############
@pytest.fixture
async def client(engine, session_factory, connections, dispatcher):
    from healpoints.main import app

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.connections = connections
    app.state.dispatcher = dispatcher
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
