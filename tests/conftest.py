import os
import tempfile

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# ------------------------------------------------------------------
# TEST SETTINGS
# Must be in the environment BEFORE hostelmate is imported: settings
# and the engine are built at import time. A file database (not
# :memory:) so concurrent sessions see the same data.
# ------------------------------------------------------------------
_DB_DIR = tempfile.mkdtemp(prefix="hostelmate-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-session-secret-key-0123456789abcdef"
os.environ["SMTP_HOST"] = ""

from hostelmate.main import app  # noqa: E402
from hostelmate.core.database import AsyncSessionLocal, drop_db, init_db  # noqa: E402
from hostelmate.core.security import create_access_token  # noqa: E402
from hostelmate.models.student import Student  # noqa: E402
from hostelmate.models.user import User, UserRole  # noqa: E402
from hostelmate.services.qr_service import LeaveQRSigner  # noqa: E402


@pytest_asyncio.fixture
async def database():
    """Fresh tables for every test that touches the DB."""
    await drop_db()
    await init_db()
    yield


@pytest_asyncio.fixture
async def db_session(database):
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client(database):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def signer():
    return LeaveQRSigner("test-signing-secret-for-leave-qr-codes")


@pytest.fixture
def headers_for():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


# ------------------------------------------------------------------
# USERS
# ------------------------------------------------------------------
async def _add_user(session, role, name, email, student=None) -> User:
    user = User(name=name, email=email, role=role, student_id=student.id if student else None)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def _add_student_user(session, code, name, email, room) -> User:
    student = Student(
        student_code=code,
        full_name=name,
        email=email,
        hostel_block=room.split("-")[0],
        room_number=room,
    )
    session.add(student)
    await session.commit()
    await session.refresh(student)
    return await _add_user(session, UserRole.Student, name, email, student)


@pytest_asyncio.fixture
async def student_user(db_session):
    return await _add_student_user(db_session, "HM-2025-0042", "Asha Verma", "asha@example.com", "B-214")


@pytest_asyncio.fixture
async def other_student_user(db_session):
    return await _add_student_user(db_session, "HM-2025-0077", "Ravi Kumar", "ravi@example.com", "C-105")


@pytest_asyncio.fixture
async def warden_user(db_session):
    return await _add_user(db_session, UserRole.Warden, "Warden Mehta", "warden@example.com")


@pytest_asyncio.fixture
async def security_user(db_session):
    return await _add_user(db_session, UserRole.Security, "Gate Guard", "gate@example.com")


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await _add_user(db_session, UserRole.Admin, "Admin", "admin@example.com")
