"""Shared fixtures for API and service tests."""

import os


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_REQUESTS", "false")

from collections.abc import Callable, Iterator  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.auth.permissions import UserRole  # noqa: E402
from src.auth.security import create_access_token  # noqa: E402
from src.main import app  # noqa: E402


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Test client without the lifespan (no Cassandra or Redis)."""
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def override() -> Iterator[Callable[[Callable, object], None]]:
    """Replace a dependency with a fixed instance for one test."""

    def _override(dependency: Callable, instance: object) -> None:
        app.dependency_overrides[dependency] = lambda: instance

    yield _override
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build a bearer header for a user with the given role."""

    def _headers(
        role: UserRole = UserRole.TEACHER,
        user_id: UUID | None = None,
        teacher_id: UUID | None = None,
    ) -> dict[str, str]:
        data = {"sub": str(user_id or uuid4()), "role": role.value}
        if teacher_id:
            data["teacher_id"] = str(teacher_id)
        return {"Authorization": f"Bearer {create_access_token(data)}"}

    return _headers
