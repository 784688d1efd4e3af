"""
Pytest configuration and fixtures for the banking admin API tests
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Import app and dependencies
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from main import app
from auth import get_current_user
from database import get_db
from core.rate_limiting import limiter
from models import USERS, USER_ASSIGNMENTS
from fakes import FakeSupabase

ADMIN = "a0000000-0000-0000-0000-000000000001"
SUPERIOR = "50000000-0000-0000-0000-000000000001"
MANAGER_1 = "m1000000-0000-0000-0000-000000000001"
MANAGER_2 = "m2000000-0000-0000-0000-000000000001"
USER_1 = "u1000000-0000-0000-0000-000000000001"
USER_2 = "u2000000-0000-0000-0000-000000000001"
USER_3 = "u3000000-0000-0000-0000-000000000001"
USER_4 = "u4000000-0000-0000-0000-000000000001"
PROMOTED = "p0000000-0000-0000-0000-000000000001"


def _user(user_id, email, full_name=None, is_admin=False, is_manager=False, is_superiormanager=False):
    return {
        "id": user_id,
        "email": email,
        "full_name": full_name,
        "is_admin": is_admin,
        "is_manager": is_manager,
        "is_superiormanager": is_superiormanager,
    }


@pytest.fixture
def fake_db():
    """
    Hierarchy used across the tests:

        SUPERIOR -> MANAGER_1 -> USER_1, USER_2, PROMOTED (now a manager)
                    MANAGER_2 -> USER_3
        USER_4 is unassigned; ADMIN is a full admin.
    """
    db = FakeSupabase()
    db.seed(
        USERS,
        _user(ADMIN, "admin@bank.test", "Ada Admin", is_admin=True),
        _user(SUPERIOR, "boss@bank.test", "Sam Superior", is_admin=True, is_superiormanager=True),
        _user(MANAGER_1, "m1@bank.test", "Mia Manager", is_manager=True),
        _user(MANAGER_2, "m2@bank.test", "Max Manager", is_manager=True),
        _user(USER_1, "alice@example.com", "Alice Client"),
        _user(USER_2, "bob@example.com", None),
        _user(USER_3, "carol@example.com", "Carol Client"),
        _user(USER_4, "dave@example.com", "Dave Client"),
        _user(PROMOTED, "pat@example.com", "Pat Promoted", is_manager=True),
    )
    db.seed(
        USER_ASSIGNMENTS,
        {"manager_id": SUPERIOR, "assigned_user_id": MANAGER_1, "assigned_by": ADMIN},
        {"manager_id": MANAGER_1, "assigned_user_id": USER_1, "assigned_by": ADMIN},
        {"manager_id": MANAGER_1, "assigned_user_id": USER_2, "assigned_by": ADMIN},
        {"manager_id": MANAGER_1, "assigned_user_id": PROMOTED, "assigned_by": ADMIN},
        {"manager_id": MANAGER_2, "assigned_user_id": USER_3, "assigned_by": ADMIN},
    )
    return db


class Caller:
    def __init__(self):
        self.user_id = ADMIN

    def payload(self):
        return {"sub": self.user_id, "role": "authenticated"}


@pytest.fixture
def caller():
    return Caller()


@pytest.fixture(scope="function")
def override_deps(fake_db, caller):
    """Override auth and the request-scoped client"""
    def _override_get_db():
        yield fake_db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_current_user] = caller.payload
    limiter.enabled = False
    yield
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(override_deps):
    """Create an async test client"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
