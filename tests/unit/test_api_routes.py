"""
Unit tests for API v1 routes.

Tests endpoint responses with a mocked OnboardingSaga: request parsing,
Outcome to status-code mapping and operator authentication.
"""

from base64 import b64encode
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.dependencies import get_saga
from src.api.v1.routes import router
from src.config.settings import Settings
from src.domain.models import DeveloperProfile, ErrorKind, Outcome
from src.domain.saga import OnboardingSaga

REGISTER_BODY = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "domain_name": "acme",
    "extension_type": "ai",
}


def basic_auth_header(username: str, password: str) -> dict:
    """Create HTTP BASIC AUTH header for testing."""
    encoded = b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


@pytest.fixture
def saga() -> MagicMock:
    return MagicMock(spec=OnboardingSaga)


@pytest.fixture
def app(saga: MagicMock) -> FastAPI:
    """Create test FastAPI application with a mocked saga."""
    test_app = FastAPI()
    test_app.include_router(router, prefix="/v1")
    test_app.state.settings = Settings(
        _env_file=None, operator_username="operator", operator_password="s3cret"
    )
    test_app.dependency_overrides[get_saga] = lambda: saga
    return test_app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """Create test client for the application."""
    return TestClient(app)


class TestRegisterEndpoint:
    """Tests for POST /v1/developers."""

    def test_register_success_returns_201(self, client: TestClient, saga: MagicMock) -> None:
        """Successful registration returns 201 with the outcome body."""
        saga.register.return_value = Outcome.success(
            "Developer registered", {"id": "dev-1", "code_sent": True}
        )

        response = client.post("/v1/developers", json=REGISTER_BODY)

        assert response.status_code == 201
        assert response.json() == {
            "status": "success",
            "message": "Developer registered",
            "data": {"id": "dev-1", "code_sent": True},
            "step": None,
        }
        profile = saga.register.call_args.args[0]
        assert isinstance(profile, DeveloperProfile)
        assert profile.domain_name == "acme"

    def test_register_duplicate_returns_409(self, client: TestClient, saga: MagicMock) -> None:
        """A conflict outcome returns 409 with its message."""
        saga.register.return_value = Outcome.failure(ErrorKind.CONFLICT, "Email already registered")

        response = client.post("/v1/developers", json=REGISTER_BODY)

        assert response.status_code == 409
        assert response.json() == {"detail": "Email already registered"}

    def test_register_partial_returns_207(self, client: TestClient, saga: MagicMock) -> None:
        """A registration whose code could not be issued is 207."""
        saga.register.return_value = Outcome.partial(
            "Step challenge failed", "challenge", ErrorKind.UPSTREAM, {"id": "dev-1"}
        )

        response = client.post("/v1/developers", json=REGISTER_BODY)

        assert response.status_code == 207
        assert response.json()["step"] == "challenge"

    def test_register_validates_email(self, client: TestClient, saga: MagicMock) -> None:
        """Malformed bodies are rejected with 422 before reaching the saga."""
        response = client.post("/v1/developers", json={**REGISTER_BODY, "email": "invalid"})

        assert response.status_code == 422
        saga.register.assert_not_called()


class TestVerificationEndpoints:
    """Tests for the email verification endpoints."""

    def test_verify_success(self, client: TestClient, saga: MagicMock) -> None:
        """A verified code returns 200 with the customer id."""
        saga.verify_challenge.return_value = Outcome.success("Email verified", {"customer_id": "cus_1"})

        response = client.post("/v1/verification/verify", json={"email": "ada@example.com", "code": "012345"})

        assert response.status_code == 200
        assert response.json()["data"] == {"customer_id": "cus_1"}
        saga.verify_challenge.assert_called_once_with("ada@example.com", "012345")

    def test_verify_failure_is_400(self, client: TestClient, saga: MagicMock) -> None:
        """Code failures return 400 with the generic message."""
        saga.verify_challenge.return_value = Outcome.failure(
            ErrorKind.VALIDATION, "Invalid or expired verification code"
        )

        response = client.post("/v1/verification/verify", json={"email": "ada@example.com", "code": "000000"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid or expired verification code"}

    def test_verify_rejects_short_code(self, client: TestClient, saga: MagicMock) -> None:
        """Codes that are not six digits never reach the saga."""
        response = client.post("/v1/verification/verify", json={"email": "ada@example.com", "code": "123"})

        assert response.status_code == 422
        saga.verify_challenge.assert_not_called()

    def test_send_code_unknown_email(self, client: TestClient, saga: MagicMock) -> None:
        """Unknown developers return 404."""
        saga.issue_challenge.return_value = Outcome.failure(ErrorKind.NOT_FOUND, "Developer not found")

        response = client.post("/v1/verification/code", json={"email": "nobody@example.com"})

        assert response.status_code == 404


class TestPaymentEndpoints:
    """Tests for checkout and subscription confirmation."""

    def test_checkout_session(self, client: TestClient, saga: MagicMock) -> None:
        """A created session returns its id and url."""
        saga.create_checkout_session.return_value = Outcome.success(
            "Session created", {"session_id": "cs_1", "url": "https://pay.example/cs_1"}
        )

        response = client.post("/v1/checkout/sessions", json={"plan": "basic", "customer_id": "cus_1"})

        assert response.status_code == 200
        assert response.json()["data"]["session_id"] == "cs_1"
        saga.create_checkout_session.assert_called_once_with("basic", "cus_1")

    def test_unpaid_confirmation_is_202(self, client: TestClient, saga: MagicMock) -> None:
        """A pending payment returns 202."""
        saga.confirm_payment.return_value = Outcome.pending("Payment not completed", {"session_id": "cs_1"})

        response = client.post("/v1/subscriptions/confirm", json={"session_id": "cs_1", "customer_id": "cus_1"})

        assert response.status_code == 202
        assert response.json()["status"] == "pending"

    def test_partial_issuance_is_207(self, client: TestClient, saga: MagicMock) -> None:
        """A paid subscription whose issuance stopped returns 207 naming the step."""
        saga.confirm_payment.return_value = Outcome.partial(
            "Step credential failed", "credential", ErrorKind.UPSTREAM, {"developer_id": "dev-1"}
        )

        response = client.post("/v1/subscriptions/confirm", json={"session_id": "cs_1", "customer_id": "cus_1"})

        assert response.status_code == 207
        assert response.json()["step"] == "credential"

    def test_upstream_failure_is_502(self, client: TestClient, saga: MagicMock) -> None:
        """Upstream failures before payment is recorded return 502."""
        saga.confirm_payment.return_value = Outcome.failure(ErrorKind.UPSTREAM, "unavailable")

        response = client.post("/v1/subscriptions/confirm", json={"session_id": "cs_1", "customer_id": "cus_1"})

        assert response.status_code == 502


class TestCredentialEndpoints:
    """Tests for credential verification, identifiers and profiles."""

    def test_verify_credential(self, client: TestClient, saga: MagicMock) -> None:
        """Verification results are returned as data."""
        saga.verify_credential.return_value = Outcome.success("Credential verified", {"verified": True})

        response = client.post("/v1/credentials/verify", json={"vc_jwt": "a.b.c"})

        assert response.status_code == 200
        assert response.json()["data"] == {"verified": True}

    def test_stale_confirmation_is_410(self, client: TestClient, saga: MagicMock) -> None:
        """An expired verification request returns 410 Gone."""
        saga.confirm_credential.return_value = Outcome.failure(ErrorKind.EXPIRED, "Verification request expired")

        response = client.post(
            "/v1/credentials/confirm",
            json={"uuid": "urn:uuid:1", "vc_jwt": "a.b.c", "timestamp": 1.0},
        )

        assert response.status_code == 410
        saga.confirm_credential.assert_called_once_with("urn:uuid:1", "a.b.c", 1.0)

    def test_refresh_identifier(self, client: TestClient, saga: MagicMock) -> None:
        """Refreshing passes the uri through."""
        saga.refresh_identifier.return_value = Outcome.success("Identifier updated", {"uri": "did:jwk:x"})

        response = client.post("/v1/identifiers/refresh", json={"uri": "did:jwk:x"})

        assert response.status_code == 200
        saga.refresh_identifier.assert_called_once_with("did:jwk:x")

    def test_profile_not_found(self, client: TestClient, saga: MagicMock) -> None:
        """Unknown profile names return 404."""
        saga.profile.return_value = Outcome.failure(ErrorKind.NOT_FOUND, "Developer not found")

        response = client.get("/v1/profiles/nobody.ai")

        assert response.status_code == 404
        saga.profile.assert_called_once_with("nobody.ai")


class TestOperatorEndpoints:
    """Tests for operator authentication."""

    def test_resume_requires_auth(self, client: TestClient, saga: MagicMock) -> None:
        """Missing credentials return 401."""
        response = client.post("/v1/operations/resume", json={"email": "ada@example.com"})

        assert response.status_code == 401
        saga.resume.assert_not_called()

    def test_resume_wrong_password(self, client: TestClient, saga: MagicMock) -> None:
        """Wrong credentials return 401 with a Basic challenge."""
        response = client.post(
            "/v1/operations/resume",
            json={"email": "ada@example.com"},
            headers=basic_auth_header("operator", "wrong"),
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Basic"
        saga.resume.assert_not_called()

    def test_resume_with_operator(self, client: TestClient, saga: MagicMock) -> None:
        """A valid operator can resume a developer."""
        saga.resume.return_value = Outcome.success("Credentials issued", {"vc_jwt": "a.b.c"})

        response = client.post(
            "/v1/operations/resume",
            json={"email": "ada@example.com"},
            headers=basic_auth_header("operator", "s3cret"),
        )

        assert response.status_code == 200
        saga.resume.assert_called_once_with("ada@example.com")

    def test_issue_direct_with_operator(self, client: TestClient, saga: MagicMock) -> None:
        """A valid operator can issue credentials directly."""
        saga.issue_direct.return_value = Outcome.success("Credentials issued", {"vc_jwt": "a.b.c"})

        response = client.post(
            "/v1/operations/issue-direct",
            json={"email": "ada@example.com"},
            headers=basic_auth_header("operator", "s3cret"),
        )

        assert response.status_code == 200
        saga.issue_direct.assert_called_once_with("ada@example.com")

    def test_empty_password_disables_operator_endpoints(self, app: FastAPI, saga: MagicMock) -> None:
        """With no operator password configured, nobody is authenticated."""
        app.state.settings = Settings(_env_file=None, operator_password="")
        client = TestClient(app)

        response = client.post(
            "/v1/operations/issue-direct",
            json={"email": "ada@example.com"},
            headers=basic_auth_header("operator", ""),
        )

        assert response.status_code == 401
        saga.issue_direct.assert_not_called()

    @pytest.mark.parametrize(
        ("path", "body"),
        [
            ("/v1/operations/revoke-credential", {"uuid": "urn:uuid:1"}),
            ("/v1/operations/revoke-identifier", {"uri": "did:jwk:abc"}),
            ("/v1/operations/assets", {"email": "ada@example.com"}),
        ],
    )
    def test_asset_operations_require_auth(
        self, client: TestClient, saga: MagicMock, path: str, body: dict
    ) -> None:
        """Revocation and listing are operator-only."""
        response = client.post(path, json=body)

        assert response.status_code == 401
        saga.revoke_credential.assert_not_called()
        saga.revoke_identifier.assert_not_called()
        saga.list_assets.assert_not_called()

    def test_revoke_credential(self, client: TestClient, saga: MagicMock) -> None:
        """An operator revokes a credential by uuid."""
        saga.revoke_credential.return_value = Outcome.success(
            "Credential revoked", {"id": "urn:uuid:1", "status": "Revoked"}
        )

        response = client.post(
            "/v1/operations/revoke-credential",
            json={"uuid": "urn:uuid:1"},
            headers=basic_auth_header("operator", "s3cret"),
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "Revoked"
        saga.revoke_credential.assert_called_once_with("urn:uuid:1")

    def test_revoke_unknown_identifier_is_404(self, client: TestClient, saga: MagicMock) -> None:
        """An unknown identifier maps to 404."""
        saga.revoke_identifier.return_value = Outcome.failure(
            ErrorKind.NOT_FOUND, "Identifier did:jwk:abc not found"
        )

        response = client.post(
            "/v1/operations/revoke-identifier",
            json={"uri": "did:jwk:abc"},
            headers=basic_auth_header("operator", "s3cret"),
        )

        assert response.status_code == 404
        saga.revoke_identifier.assert_called_once_with("did:jwk:abc")

    def test_list_assets(self, client: TestClient, saga: MagicMock) -> None:
        """An operator lists a developer's identifiers and credentials."""
        saga.list_assets.return_value = Outcome.success(
            "Assets fetched", {"identifiers": [], "credentials": []}
        )

        response = client.post(
            "/v1/operations/assets",
            json={"email": "ada@example.com"},
            headers=basic_auth_header("operator", "s3cret"),
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"identifiers": [], "credentials": []}
        saga.list_assets.assert_called_once_with("ada@example.com")
