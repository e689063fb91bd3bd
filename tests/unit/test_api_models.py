"""
Unit tests for API request/response models.

Tests Pydantic model validation for the onboarding endpoints. Business
rules live in the domain; these models only check shape.
"""

import pytest
from pydantic import ValidationError

from src.api.models import (
    CheckoutRequest,
    ConfirmCredentialRequest,
    ErrorResponse,
    OutcomeResponse,
    RegisterRequest,
    VerifyCodeRequest,
)


def register_payload(**overrides) -> dict:
    payload = {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "domain_name": "acme",
        "extension_type": "ai",
    }
    payload.update(overrides)
    return payload


class TestRegisterRequest:
    """Tests for RegisterRequest model."""

    def test_valid_request_with_defaults(self) -> None:
        """Optional profile fields default to empty strings."""
        request = RegisterRequest(**register_payload())

        assert request.email == "ada@example.com"
        assert request.company_name == ""
        assert request.extension_name == ""

    def test_email_domain_normalized(self) -> None:
        """EmailStr normalizes domain to lowercase."""
        request = RegisterRequest(**register_payload(email="Ada@EXAMPLE.COM"))
        assert request.email == "Ada@example.com"

    def test_invalid_email_rejected(self) -> None:
        """Invalid email format raises ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            RegisterRequest(**register_payload(email="not-an-email"))
        assert "email" in str(exc_info.value)

    @pytest.mark.parametrize("field", ["first_name", "last_name", "domain_name", "extension_type"])
    def test_required_fields(self, field: str) -> None:
        """Missing required fields raise ValidationError."""
        payload = register_payload()
        del payload[field]

        with pytest.raises(ValidationError):
            RegisterRequest(**payload)

    def test_empty_name_rejected(self) -> None:
        """Empty first names are rejected."""
        with pytest.raises(ValidationError):
            RegisterRequest(**register_payload(first_name=""))

    def test_unknown_extension_type_passes_shape_check(self) -> None:
        """Extension type values are checked by the domain, not the model."""
        assert RegisterRequest(**register_payload(extension_type="blockchain")).extension_type == "blockchain"


class TestVerifyCodeRequest:
    """Tests for VerifyCodeRequest model."""

    def test_six_digit_code(self) -> None:
        """A 6-digit code is accepted, leading zeros preserved."""
        assert VerifyCodeRequest(email="ada@example.com", code="012345").code == "012345"

    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456", "", "12 456"])
    def test_malformed_code_rejected(self, code: str) -> None:
        """Codes that are not exactly six digits raise ValidationError."""
        with pytest.raises(ValidationError):
            VerifyCodeRequest(email="ada@example.com", code=code)


class TestOtherRequests:
    """Tests for the remaining request models."""

    def test_checkout_requires_plan_and_customer(self) -> None:
        """Both plan and customer id must be non-empty."""
        with pytest.raises(ValidationError):
            CheckoutRequest(plan="", customer_id="cus_1")
        with pytest.raises(ValidationError):
            CheckoutRequest(plan="basic", customer_id="")

    def test_confirm_credential_timestamp_numeric(self) -> None:
        """The timestamp must be a number of seconds."""
        request = ConfirmCredentialRequest(uuid="urn:uuid:1", vc_jwt="a.b.c", timestamp=1768478400.5)
        assert request.timestamp == 1768478400.5

        with pytest.raises(ValidationError):
            ConfirmCredentialRequest(uuid="urn:uuid:1", vc_jwt="a.b.c", timestamp="yesterday")


class TestResponseModels:
    """Tests for response models."""

    def test_outcome_response_optional_fields(self) -> None:
        """data and step are optional."""
        response = OutcomeResponse(status="success", message="ok")

        assert response.data is None
        assert response.step is None

    def test_error_response(self) -> None:
        """ErrorResponse carries a detail string."""
        assert ErrorResponse(detail="Developer not found").detail == "Developer not found"
