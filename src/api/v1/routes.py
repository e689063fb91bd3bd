"""
API v1 routes.

Defines REST endpoints for the developer onboarding API. Every route
delegates to one OnboardingSaga entry point and maps the returned Outcome
to an HTTP status:

- success -> 200 (201 for registration)
- pending -> 202
- partial -> 207 (body names the failed step)
- errors  -> 400 / 404 / 409 / 410 / 502 via HTTPException
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from src.api.dependencies import get_operator, get_saga
from src.api.models import (
    CheckoutRequest,
    ConfirmCredentialRequest,
    ConfirmSubscriptionRequest,
    EmailRequest,
    ErrorResponse,
    OutcomeResponse,
    RefreshIdentifierRequest,
    RegisterRequest,
    RevokeCredentialRequest,
    RevokeIdentifierRequest,
    VerifyCodeRequest,
    VerifyCredentialRequest,
)
from src.domain.models import DeveloperProfile, ErrorKind, Outcome, OutcomeStatus
from src.domain.saga import OnboardingSaga

router = APIRouter(tags=["v1"])

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
}

COMMON_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    422: {"description": "Validation error"},
    502: {"model": ErrorResponse, "description": "Dependent service unavailable"},
}


def to_response(
    outcome: Outcome, response: Response, success_status: int = status.HTTP_200_OK
) -> OutcomeResponse:
    """
    Translate a saga Outcome into a response body and status code.

    Raises:
        HTTPException: For error outcomes
    """
    if outcome.status is OutcomeStatus.ERROR:
        raise HTTPException(
            status_code=ERROR_STATUS.get(outcome.error, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=outcome.message,
        )
    if outcome.status is OutcomeStatus.PENDING:
        response.status_code = status.HTTP_202_ACCEPTED
    elif outcome.status is OutcomeStatus.PARTIAL:
        response.status_code = status.HTTP_207_MULTI_STATUS
    else:
        response.status_code = success_status
    return OutcomeResponse(
        status=outcome.status.value,
        message=outcome.message,
        data=outcome.data,
        step=outcome.step,
    )


@router.post(
    "/developers",
    response_model=OutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**COMMON_ERRORS, 409: {"model": ErrorResponse, "description": "Email already registered"}},
    summary="Register a developer",
    description="Create a developer record and email a 6-digit verification code.",
)
def register_developer(
    request_data: RegisterRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    profile = DeveloperProfile(**request_data.model_dump())
    return to_response(saga.register(profile), response, status.HTTP_201_CREATED)


@router.post(
    "/verification/code",
    response_model=OutcomeResponse,
    responses={**COMMON_ERRORS, 404: {"model": ErrorResponse, "description": "Unknown developer"}},
    summary="Send a new verification code",
)
def send_verification_code(
    request_data: EmailRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.issue_challenge(request_data.email), response)


@router.post(
    "/verification/verify",
    response_model=OutcomeResponse,
    responses=COMMON_ERRORS,
    summary="Verify email with the 6-digit code",
    description="On success the payment customer is created and its id returned.",
)
def verify_email(
    request_data: VerifyCodeRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    """
    All code failures (unknown email, wrong or expired code, code already
    used) return the same 400 response.
    """
    return to_response(saga.verify_challenge(request_data.email, request_data.code), response)


@router.post(
    "/checkout/sessions",
    response_model=OutcomeResponse,
    responses={
        **COMMON_ERRORS,
        207: {"model": OutcomeResponse, "description": "Session created but not recorded"},
        404: {"model": ErrorResponse, "description": "Unknown customer"},
        409: {"model": ErrorResponse, "description": "Already subscribed"},
    },
    summary="Create a checkout session",
)
def create_checkout_session(
    request_data: CheckoutRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    outcome = saga.create_checkout_session(request_data.plan, request_data.customer_id)
    return to_response(outcome, response)


@router.post(
    "/subscriptions/confirm",
    response_model=OutcomeResponse,
    responses={
        **COMMON_ERRORS,
        202: {"model": OutcomeResponse, "description": "Payment not completed yet"},
        207: {"model": OutcomeResponse, "description": "Paid, but issuance did not finish"},
        404: {"model": ErrorResponse, "description": "Unknown customer"},
    },
    summary="Confirm payment and issue credentials",
    description="Safe to call repeatedly; identifiers and credentials are issued at most once.",
)
def confirm_subscription(
    request_data: ConfirmSubscriptionRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    outcome = saga.confirm_payment(request_data.session_id, request_data.customer_id)
    return to_response(outcome, response)


@router.post(
    "/credentials/verify",
    response_model=OutcomeResponse,
    responses=COMMON_ERRORS,
    summary="Verify a signed credential",
)
def verify_credential(
    request_data: VerifyCredentialRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.verify_credential(request_data.vc_jwt), response)


@router.post(
    "/credentials/confirm",
    response_model=OutcomeResponse,
    responses={
        **COMMON_ERRORS,
        404: {"model": ErrorResponse, "description": "Unknown credential"},
        410: {"model": ErrorResponse, "description": "Verification request expired"},
    },
    summary="Confirm an end-user credential verification",
)
def confirm_credential(
    request_data: ConfirmCredentialRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    outcome = saga.confirm_credential(
        request_data.uuid, request_data.vc_jwt, request_data.timestamp
    )
    return to_response(outcome, response)


@router.post(
    "/identifiers/refresh",
    response_model=OutcomeResponse,
    responses={**COMMON_ERRORS, 404: {"model": ErrorResponse, "description": "Unknown identifier"}},
    summary="Re-resolve an identifier document",
)
def refresh_identifier(
    request_data: RefreshIdentifierRequest,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.refresh_identifier(request_data.uri), response)


@router.get(
    "/profiles/{name}",
    response_model=OutcomeResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown identifier name"}},
    summary="Public developer profile",
)
def get_profile(
    name: str,
    response: Response,
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.profile(name), response)


@router.post(
    "/operations/resume",
    response_model=OutcomeResponse,
    tags=["operations"],
    responses={**COMMON_ERRORS, 401: {"model": ErrorResponse, "description": "Not an operator"}},
    summary="Resume onboarding from the persisted state",
)
def resume_onboarding(
    request_data: EmailRequest,
    response: Response,
    operator: str = Depends(get_operator),
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.resume(request_data.email), response)


@router.post(
    "/operations/issue-direct",
    response_model=OutcomeResponse,
    tags=["operations"],
    responses={**COMMON_ERRORS, 401: {"model": ErrorResponse, "description": "Not an operator"}},
    summary="Issue identifier and credential without payment",
)
def issue_direct(
    request_data: EmailRequest,
    response: Response,
    operator: str = Depends(get_operator),
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.issue_direct(request_data.email), response)


@router.post(
    "/operations/revoke-credential",
    response_model=OutcomeResponse,
    tags=["operations"],
    responses={
        **COMMON_ERRORS,
        401: {"model": ErrorResponse, "description": "Not an operator"},
        404: {"model": ErrorResponse, "description": "Unknown credential"},
    },
    summary="Revoke a credential",
    description="The credential is kept with status Revoked and can no longer be confirmed.",
)
def revoke_credential(
    request_data: RevokeCredentialRequest,
    response: Response,
    operator: str = Depends(get_operator),
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.revoke_credential(request_data.uuid), response)


@router.post(
    "/operations/revoke-identifier",
    response_model=OutcomeResponse,
    tags=["operations"],
    responses={
        **COMMON_ERRORS,
        401: {"model": ErrorResponse, "description": "Not an operator"},
        404: {"model": ErrorResponse, "description": "Unknown identifier"},
    },
    summary="Revoke an identifier",
    description="The identifier keeps its name, which is never issued again.",
)
def revoke_identifier(
    request_data: RevokeIdentifierRequest,
    response: Response,
    operator: str = Depends(get_operator),
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.revoke_identifier(request_data.uri), response)


@router.post(
    "/operations/assets",
    response_model=OutcomeResponse,
    tags=["operations"],
    responses={
        **COMMON_ERRORS,
        401: {"model": ErrorResponse, "description": "Not an operator"},
        404: {"model": ErrorResponse, "description": "Unknown developer"},
    },
    summary="List a developer's identifiers and credentials",
)
def list_assets(
    request_data: EmailRequest,
    response: Response,
    operator: str = Depends(get_operator),
    saga: OnboardingSaga = Depends(get_saga),
) -> OutcomeResponse:
    return to_response(saga.list_assets(request_data.email), response)
