"""Smoke tests for the calendar API surface.

These tests verify:
1. Schema validation (pure unit tests)
2. Route registration (endpoints exist)
3. Error rendering and the OAuth callback redirects (no database access)
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError as PydanticValidationError

from workblock.deps import get_current_user
from workblock.main import app
from workblock.models.user import User
from workblock.schemas.calendar import (
    CalendarSettingsUpdate,
    ConflictResolveRequest,
    WindowCheckRequest,
)


# --- Fixtures ---

@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def homeless_user():
    """Authenticated user who has not joined a household yet."""
    app.dependency_overrides[get_current_user] = lambda: User(
        id=uuid4(), email="new@example.com", clerk_user_id="user_new"
    )
    yield
    app.dependency_overrides.pop(get_current_user, None)


# --- Schema Validation Tests (no DB required) ---

class TestSchemas:
    def test_window_check_requires_end_after_start(self):
        start = datetime(2030, 1, 7, 9, tzinfo=timezone.utc)
        with pytest.raises(PydanticValidationError):
            WindowCheckRequest(start_time=start, end_time=start)

        request = WindowCheckRequest(
            start_time=start, end_time=datetime(2030, 1, 7, 10, tzinfo=timezone.utc)
        )
        assert request.exclude_lesson_id is None

    def test_settings_update_rejects_unknown_fields(self):
        with pytest.raises(PydanticValidationError):
            CalendarSettingsUpdate(sync_enabled=True, calendar_id="other")

        patch = CalendarSettingsUpdate(auto_block_enabled=False)
        assert patch.model_dump(exclude_unset=True) == {"auto_block_enabled": False}

    def test_resolve_request(self):
        request = ConflictResolveRequest(work_event_id=uuid4(), resolution_type="keep_both")
        assert request.affected_lesson_id is None
        assert request.new_lesson_time is None


# --- Route Registration Tests ---

class TestRoutes:
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("GET", "/api/v1/calendar/oauth/{provider}/initiate"),
            ("GET", "/api/v1/calendar/oauth/{provider}/callback"),
            ("GET", "/api/v1/calendar/connections"),
            ("GET", "/api/v1/calendar/connections/{connection_id}"),
            ("PATCH", "/api/v1/calendar/connections/{connection_id}/settings"),
            ("DELETE", "/api/v1/calendar/connections/{connection_id}"),
            ("POST", "/api/v1/calendar/sync/{connection_id}"),
            ("POST", "/api/v1/calendar/sync"),
            ("GET", "/api/v1/calendar/sync/{connection_id}/logs"),
            ("POST", "/api/v1/calendar/auto-block/process"),
            ("GET", "/api/v1/calendar/auto-block/status"),
            ("GET", "/api/v1/calendar/conflicts"),
            ("GET", "/api/v1/calendar/conflicts/statistics"),
            ("POST", "/api/v1/calendar/conflicts/scan-lessons"),
            ("POST", "/api/v1/calendar/conflicts/validate"),
            ("GET", "/api/v1/calendar/conflicts/available-slots"),
            ("POST", "/api/v1/calendar/conflicts/resolve"),
            ("GET", "/api/v1/calendar/conflicts/resolutions"),
        ],
    )
    def test_route_registered(self, method, path):
        paths = app.openapi()["paths"]
        assert path in paths
        assert method.lower() in paths[path]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# --- Request Flow Tests ---

class TestRequests:
    def test_missing_authorization_header(self, client):
        response = client.get("/api/v1/calendar/connections")
        assert response.status_code == 401

    def test_domain_error_is_rendered_with_code(self, client, homeless_user):
        response = client.get("/api/v1/calendar/connections")
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "Organization not found"}

    def test_callback_with_provider_error_redirects(self, client):
        response = client.get(
            "/api/v1/calendar/oauth/google/callback",
            params={"error": "access_denied"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "http://localhost:3000/calendar/connect?error=access_denied"

    def test_callback_without_code_redirects(self, client):
        response = client.get(
            "/api/v1/calendar/oauth/outlook/callback",
            params={"state": "abc"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"].endswith("error=invalid_request")

    def test_callback_with_forged_state_redirects(self, client):
        response = client.get(
            "/api/v1/calendar/oauth/google/callback",
            params={"code": "auth-code", "state": "not-a-signed-state"},
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"].endswith("error=auth_error")
