"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Business rules (domain name format, plan keys, link formats) are enforced by
the domain and reported as 400; these models only check shape.
"""

from typing import Any

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    """Request model for developer registration."""

    first_name: str = Field(..., min_length=1, max_length=255)
    last_name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    domain_name: str = Field(..., min_length=1, max_length=63, description="Domain label, e.g. acme")
    extension_type: str = Field(..., description='Either "ai" or "service"')
    extension_name: str = Field("", max_length=63)
    company_name: str = Field("", max_length=255)
    description: str = ""
    web_link: str = ""
    linked_in: str = ""
    github: str = ""
    hugging_face: str = ""


class EmailRequest(BaseModel):
    """Request model for endpoints addressing a developer by email."""

    email: EmailStr


class VerifyCodeRequest(BaseModel):
    """Request model for email verification."""

    email: EmailStr
    code: str = Field(
        ...,
        min_length=6,
        max_length=6,
        pattern=r"^\d{6}$",
        description="6-digit verification code",
    )


class CheckoutRequest(BaseModel):
    plan: str = Field(..., min_length=1, description='Plan key, e.g. "basic" or "premium"')
    customer_id: str = Field(..., min_length=1)


class ConfirmSubscriptionRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)


class VerifyCredentialRequest(BaseModel):
    vc_jwt: str = Field(..., min_length=1, description="Compact signed credential")


class ConfirmCredentialRequest(BaseModel):
    """Request model for confirming an end-user credential verification."""

    uuid: str = Field(..., min_length=1)
    vc_jwt: str = Field(..., min_length=1)
    timestamp: float = Field(..., description="Request time in seconds since the epoch")


class RefreshIdentifierRequest(BaseModel):
    uri: str = Field(..., min_length=1)


class RevokeIdentifierRequest(BaseModel):
    uri: str = Field(..., min_length=1, description="DID of the identifier to revoke")


class RevokeCredentialRequest(BaseModel):
    uuid: str = Field(..., min_length=1, description="Credential id, e.g. urn:uuid:...")


class OutcomeResponse(BaseModel):
    """Response model shared by all onboarding endpoints."""

    status: str
    message: str
    data: dict[str, Any] | None = None
    step: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
