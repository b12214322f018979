"""
Unit tests for API v1 routes and the error mapping.

Tests endpoint responses with mocked dependencies.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from portal_auth.api.dependencies import get_auth_service, get_region_router
from portal_auth.api.errors import register_error_handlers
from portal_auth.api.v1.routes import router
from portal_auth.domain.auth import (
    AuthenticatedSession,
    AuthService,
    LoginStarted,
    SessionStarted,
    SignupCompleted,
)
from portal_auth.domain.exceptions import (
    AccountDisabled,
    BadCredential,
    DomainNotApproved,
    EmailTaken,
    FieldError,
    InvalidStatusChange,
    MalformedToken,
    NotPermitted,
    RegionMismatch,
    SameEmail,
    SignupNotAllowed,
    TokenAlreadyConsumed,
    TokenExpired,
    TokenNotFound,
    UnknownRegion,
    UserExists,
    UserNotFound,
    ValidationFailed,
    WrongSecondFactor,
)
from portal_auth.domain.ports import Portal, Region, UserRecord, UserStatus
from portal_auth.domain.regions import RegionRouter
from portal_auth.domain.tokens import IssuedToken

SESSION_TOKEN = "IND1-" + "ab" * 32
AUTH_HEADER = {"Authorization": f"Bearer {SESSION_TOKEN}"}

USER = UserRecord(
    user_id=uuid4(),
    portal=Portal.HUB,
    email="user@example.com",
    handle="user-1a2b3c4d",
    home_region=Region.IND1,
    status=UserStatus.ACTIVE,
    preferred_language="en-US",
    display_name="User",
)


@pytest.fixture
def app() -> FastAPI:
    """Create test FastAPI application."""
    test_app = FastAPI()
    register_error_handlers(test_app)
    test_app.include_router(router, prefix="/v1")

    # Mock the app.state.pools for dependency injection
    test_app.state.pools = MagicMock()

    return test_app


@pytest.fixture
def service(app: FastAPI):
    """Mocked AuthService wired into the app."""
    mock_service = MagicMock(spec=AuthService)
    app.dependency_overrides[get_auth_service] = lambda: mock_service
    yield mock_service
    app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client for the application."""
    return TestClient(app, raise_server_exceptions=False)


class TestSignupEndpoints:
    """Tests for request-signup and complete-signup."""

    def test_request_signup(self, client: TestClient, service: MagicMock) -> None:
        expires = datetime(2030, 1, 1, tzinfo=UTC)
        service.request_signup.return_value = IssuedToken(
            token="ab" * 32, expires_at=expires, record=MagicMock()
        )

        response = client.post("/v1/hub/request-signup", json={"email": "user@example.com"})

        assert response.status_code == 200
        assert response.json()["message"] == "Verification email sent"
        assert "ab" * 32 not in response.text
        service.request_signup.assert_called_once_with("user@example.com", None)

    def test_request_signup_with_region(self, client: TestClient, service: MagicMock) -> None:
        service.request_signup.return_value = IssuedToken(
            token="ab" * 32, expires_at=datetime.now(UTC), record=MagicMock()
        )
        client.post(
            "/v1/org/request-signup",
            json={"email": "user@example.com", "home_region": "USA1"},
        )
        service.request_signup.assert_called_once_with("user@example.com", Region.USA1)

    def test_request_signup_invalid_email_body(self, client: TestClient, service: MagicMock) -> None:
        """Body validation errors are 400 with a field list."""
        response = client.post("/v1/hub/request-signup", json={"email": "nope"})

        assert response.status_code == 400
        body = response.json()
        assert body["errors"][0]["field"] == "email"
        service.request_signup.assert_not_called()

    def test_request_signup_missing_field(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/v1/hub/request-signup", json={})
        assert response.status_code == 400
        assert body_fields(response) == {"email"}

    def test_domain_not_approved(self, client: TestClient, service: MagicMock) -> None:
        service.request_signup.side_effect = DomainNotApproved("unknown.org")
        response = client.post("/v1/hub/request-signup", json={"email": "a@unknown.org"})
        assert response.status_code == 403

    def test_admin_signup(self, client: TestClient, service: MagicMock) -> None:
        service.request_signup.side_effect = SignupNotAllowed("admin")
        response = client.post("/v1/admin/request-signup", json={"email": "a@example.com"})
        assert response.status_code == 403

    def test_request_signup_taken(self, client: TestClient, service: MagicMock) -> None:
        service.request_signup.side_effect = EmailTaken("user@example.com")
        response = client.post("/v1/hub/request-signup", json={"email": "user@example.com"})
        assert response.status_code == 409

    def test_complete_signup_returns_201(self, client: TestClient, service: MagicMock) -> None:
        service.complete_signup.return_value = SignupCompleted(
            session_token=SESSION_TOKEN, handle="user-1a2b3c4d", user=USER
        )

        response = client.post(
            "/v1/hub/complete-signup",
            json={
                "signup_token": "ab" * 32,
                "password": "Str0ng!pass",
                "display_name": "User",
                "preferred_language": "de-DE",
            },
        )

        assert response.status_code == 201
        assert response.json() == {"session_token": SESSION_TOKEN, "handle": "user-1a2b3c4d"}
        service.complete_signup.assert_called_once_with("ab" * 32, "Str0ng!pass", "User", "de-DE")

    def test_complete_signup_weak_password(self, client: TestClient, service: MagicMock) -> None:
        service.complete_signup.side_effect = ValidationFailed(
            [FieldError("password", "must contain a digit")]
        )
        response = client.post(
            "/v1/hub/complete-signup",
            json={"signup_token": "x", "password": "weak", "display_name": "User"},
        )
        assert response.status_code == 400
        assert response.json() == {
            "detail": "Validation failed",
            "errors": [{"field": "password", "message": "must contain a digit"}],
        }

    def test_complete_signup_user_exists(self, client: TestClient, service: MagicMock) -> None:
        service.complete_signup.side_effect = UserExists("user@example.com")
        response = client.post(
            "/v1/hub/complete-signup",
            json={"signup_token": "x", "password": "Str0ng!pass", "display_name": "User"},
        )
        assert response.status_code == 409


def body_fields(response) -> set[str]:
    return {error["field"] for error in response.json()["errors"]}


class TestLoginEndpoints:
    """Tests for login and tfa."""

    def test_login(self, client: TestClient, service: MagicMock) -> None:
        service.login.return_value = LoginStarted(tfa_token="IND1-" + "cd" * 32)

        response = client.post(
            "/v1/hub/login", json={"email": "user@example.com", "password": "Str0ng!pass"}
        )

        assert response.status_code == 200
        assert response.json() == {"tfa_token": "IND1-" + "cd" * 32}

    def test_login_bad_credential(self, client: TestClient, service: MagicMock) -> None:
        service.login.side_effect = BadCredential()
        response = client.post(
            "/v1/hub/login", json={"email": "user@example.com", "password": "wrong"}
        )
        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid credentials"}

    def test_login_disabled(self, client: TestClient, service: MagicMock) -> None:
        service.login.side_effect = AccountDisabled("x")
        response = client.post(
            "/v1/hub/login", json={"email": "user@example.com", "password": "Str0ng!pass"}
        )
        assert response.status_code == 422

    def test_tfa(self, client: TestClient, service: MagicMock) -> None:
        service.verify_tfa.return_value = SessionStarted(
            session_token=SESSION_TOKEN, preferred_language="ta-IN"
        )

        response = client.post(
            "/v1/hub/tfa",
            json={"tfa_token": "IND1-" + "cd" * 32, "tfa_code": "123456", "remember_me": True},
        )

        assert response.status_code == 200
        assert response.json() == {"session_token": SESSION_TOKEN, "preferred_language": "ta-IN"}
        service.verify_tfa.assert_called_once_with("IND1-" + "cd" * 32, "123456", remember_me=True)

    def test_tfa_wrong_code(self, client: TestClient, service: MagicMock) -> None:
        service.verify_tfa.side_effect = WrongSecondFactor()
        response = client.post("/v1/hub/tfa", json={"tfa_token": "t", "tfa_code": "000000"})
        assert response.status_code == 403


class TestTokenErrors:
    """All invalid-token variants look the same to clients."""

    @pytest.mark.parametrize(
        "exc",
        [
            TokenNotFound("password_reset"),
            TokenExpired("password_reset"),
            TokenAlreadyConsumed("password_reset"),
            RegionMismatch("wrong region"),
        ],
    )
    def test_identical_401(self, client: TestClient, service: MagicMock, exc: Exception) -> None:
        service.complete_password_reset.side_effect = exc

        response = client.post(
            "/v1/hub/complete-password-reset",
            json={"reset_token": "IND1-" + "ab" * 32, "new_password": "N3w!passw0rd"},
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid or expired token"}

    def test_malformed_token(self, client: TestClient, service: MagicMock) -> None:
        service.complete_password_reset.side_effect = MalformedToken("bad")
        response = client.post(
            "/v1/hub/complete-password-reset",
            json={"reset_token": "bad", "new_password": "N3w!passw0rd"},
        )
        assert response.status_code == 400

    def test_unknown_region(self, client: TestClient, service: MagicMock) -> None:
        service.complete_email_change.side_effect = UnknownRegion("XYZ1")
        response = client.post(
            "/v1/hub/complete-email-change", json={"verification_token": "XYZ1-" + "ab" * 32}
        )
        assert response.status_code == 400
        assert response.json() == {"detail": "Unknown region"}


class TestSessionEndpoints:
    """Tests for endpoints that need a Bearer session token."""

    def test_missing_bearer(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/v1/hub/logout")
        assert response.status_code == 401
        service.logout.assert_not_called()

    def test_wrong_scheme(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/v1/hub/logout", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_logout(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/v1/hub/logout", headers=AUTH_HEADER)
        assert response.status_code == 200
        service.logout.assert_called_once_with(SESSION_TOKEN)

    def test_logout_revoked(self, client: TestClient, service: MagicMock) -> None:
        service.logout.side_effect = TokenAlreadyConsumed("session")
        response = client.post("/v1/hub/logout", headers=AUTH_HEADER)
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_myinfo(self, client: TestClient, service: MagicMock) -> None:
        service.get_my_info.return_value = AuthenticatedSession(
            token=SESSION_TOKEN,
            region=Region.IND1,
            user=USER,
            roles=frozenset({"hub:read_posts", "hub:apply"}),
        )

        response = client.get("/v1/hub/myinfo", headers=AUTH_HEADER)

        assert response.status_code == 200
        assert response.json() == {
            "handle": "user-1a2b3c4d",
            "email": "user@example.com",
            "display_name": "User",
            "preferred_language": "en-US",
            "home_region": "IND1",
            "roles": ["hub:apply", "hub:read_posts"],
        }

    def test_set_language(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/v1/hub/set-language", json={"language": "de-DE"}, headers=AUTH_HEADER
        )
        assert response.status_code == 200
        service.set_preferred_language.assert_called_once_with(SESSION_TOKEN, "de-DE")

    def test_change_password(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/v1/hub/change-password",
            json={"current_password": "Curr3nt!pw", "new_password": "N3w!passw0rd"},
            headers=AUTH_HEADER,
        )
        assert response.status_code == 200
        service.change_password.assert_called_once_with(
            SESSION_TOKEN, "Curr3nt!pw", "N3w!passw0rd"
        )

    def test_change_password_wrong_current(self, client: TestClient, service: MagicMock) -> None:
        service.change_password.side_effect = BadCredential()
        response = client.post(
            "/v1/hub/change-password",
            json={"current_password": "x", "new_password": "N3w!passw0rd"},
            headers=AUTH_HEADER,
        )
        assert response.status_code == 401

    def test_request_email_change_same_email(self, client: TestClient, service: MagicMock) -> None:
        service.request_email_change.side_effect = SameEmail()
        response = client.post(
            "/v1/hub/request-email-change",
            json={"new_email": "user@example.com"},
            headers=AUTH_HEADER,
        )
        assert response.status_code == 400
        assert body_fields(response) == {"new_email"}


class TestPasswordResetEndpoints:
    """Tests for the reset endpoints."""

    def test_request_reset_is_uniform(self, client: TestClient, service: MagicMock) -> None:
        """Known and unknown emails get the same response."""
        service.request_password_reset.return_value = None
        first = client.post("/v1/hub/request-password-reset", json={"email": "a@example.com"})
        second = client.post("/v1/hub/request-password-reset", json={"email": "b@example.com"})
        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()

    def test_complete_reset(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/v1/hub/complete-password-reset",
            json={"reset_token": "IND1-" + "ab" * 32, "new_password": "N3w!passw0rd"},
        )
        assert response.status_code == 200


class TestMiscEndpoints:
    """Tests for regions, unknown portals and unexpected errors."""

    def test_regions(self, app: FastAPI, client: TestClient) -> None:
        app.dependency_overrides[get_region_router] = lambda: RegionRouter(
            {Region.DEU1: MagicMock(), Region.IND1: MagicMock()}
        )
        try:
            response = client.get("/v1/regions")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200
        assert response.json() == {"regions": ["IND1", "DEU1"]}

    def test_supported_languages(self, client: TestClient) -> None:
        response = client.get("/v1/supported-languages")

        assert response.status_code == 200
        assert response.json() == {"languages": ["en-US", "de-DE", "ta-IN"], "default": "en-US"}

    def test_unknown_portal(self, client: TestClient) -> None:
        """Portal path segment is validated like any other field."""
        response = client.post("/v1/nowhere/login", json={"email": "a@b.com", "password": "x"})
        assert response.status_code == 400
        assert "portal" in body_fields(response)

    def test_unexpected_error_is_generic_500(self, client: TestClient, service: MagicMock) -> None:
        service.login.side_effect = RuntimeError("connection refused to 10.0.0.5")
        response = client.post(
            "/v1/hub/login", json={"email": "user@example.com", "password": "x"}
        )
        assert response.status_code == 500
        assert "10.0.0.5" not in response.text


class TestUserStatusEndpoints:
    """Tests for disable-user and enable-user."""

    def test_disable_user(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/v1/org/disable-user", json={"email": "target@example.com"}, headers=AUTH_HEADER
        )

        assert response.status_code == 200
        assert response.json() == {"message": "User disabled"}
        service.disable_user.assert_called_once_with(SESSION_TOKEN, "target@example.com")

    def test_enable_user(self, client: TestClient, service: MagicMock) -> None:
        response = client.post(
            "/v1/org/enable-user", json={"email": "target@example.com"}, headers=AUTH_HEADER
        )

        assert response.status_code == 200
        service.enable_user.assert_called_once_with(SESSION_TOKEN, "target@example.com")

    def test_requires_bearer(self, client: TestClient, service: MagicMock) -> None:
        response = client.post("/v1/org/disable-user", json={"email": "target@example.com"})
        assert response.status_code == 401
        service.disable_user.assert_not_called()

    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (NotPermitted("org:manage_users"), 403),
            (UserNotFound("target@example.com"), 404),
            (InvalidStatusChange("already disabled"), 422),
        ],
    )
    def test_error_mapping(
        self, client: TestClient, service: MagicMock, exc: Exception, status_code: int
    ) -> None:
        service.disable_user.side_effect = exc
        response = client.post(
            "/v1/org/disable-user", json={"email": "target@example.com"}, headers=AUTH_HEADER
        )
        assert response.status_code == status_code
