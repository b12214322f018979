"""
API v1 routes.

Defines the per-portal REST endpoints for signup, login, sessions,
password reset and email change. Every route is a thin adapter: it
parses the body, calls one AuthService method and shapes the result.
Domain exceptions are turned into responses by portal_auth.api.errors.
"""

from fastapi import APIRouter, Depends, status

from portal_auth.api.dependencies import get_auth_service, get_region_router, get_session_token
from portal_auth.api.models import (
    ChangePasswordRequest,
    CompleteEmailChangeRequest,
    CompletePasswordResetRequest,
    CompleteSignupRequest,
    CompleteSignupResponse,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    MyInfoResponse,
    RegionsResponse,
    RequestEmailChangeRequest,
    RequestPasswordResetRequest,
    RequestSignupRequest,
    RequestSignupResponse,
    SessionResponse,
    SetLanguageRequest,
    SupportedLanguagesResponse,
    TFARequest,
    UserStatusRequest,
    ValidationErrorResponse,
)
from portal_auth.domain.auth import AuthService
from portal_auth.domain.regions import RegionRouter
from portal_auth.domain.validation import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES

router = APIRouter(tags=["v1"])

_BAD_REQUEST = {400: {"model": ValidationErrorResponse, "description": "Validation error"}}
_BAD_TOKEN = {
    400: {"model": ErrorResponse, "description": "Malformed token or validation error"},
    401: {"model": ErrorResponse, "description": "Invalid or expired token"},
}


@router.get(
    "/regions",
    response_model=RegionsResponse,
    summary="List regions served by this deployment",
)
def list_regions(region_router: RegionRouter = Depends(get_region_router)) -> RegionsResponse:
    return RegionsResponse(regions=region_router.regions)


@router.get(
    "/supported-languages",
    response_model=SupportedLanguagesResponse,
    summary="List languages users can pick",
)
def list_supported_languages() -> SupportedLanguagesResponse:
    return SupportedLanguagesResponse(languages=list(SUPPORTED_LANGUAGES), default=DEFAULT_LANGUAGE)


@router.post(
    "/{portal}/request-signup",
    response_model=RequestSignupResponse,
    responses={
        **_BAD_REQUEST,
        403: {"model": ErrorResponse, "description": "Domain not approved or signup closed"},
        409: {"model": ErrorResponse, "description": "Email already registered"},
    },
    summary="Start a signup",
    description="Issue a signup token for an approved email domain and mail it to the address.",
)
def request_signup(
    request_data: RequestSignupRequest,
    service: AuthService = Depends(get_auth_service),
) -> RequestSignupResponse:
    """
    Start a signup.

    - **email**: Address whose domain must be approved
    - **home_region**: Optional region for the new account
    """
    issued = service.request_signup(request_data.email, request_data.home_region)
    return RequestSignupResponse(message="Verification email sent", expires_at=issued.expires_at)


@router.post(
    "/{portal}/complete-signup",
    response_model=CompleteSignupResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **_BAD_TOKEN,
        409: {"model": ErrorResponse, "description": "Account already exists"},
    },
    summary="Complete a signup",
    description="Consume the signup token, create the account and open its first session.",
)
def complete_signup(
    request_data: CompleteSignupRequest,
    service: AuthService = Depends(get_auth_service),
) -> CompleteSignupResponse:
    result = service.complete_signup(
        request_data.signup_token,
        request_data.password,
        request_data.display_name,
        request_data.preferred_language,
    )
    return CompleteSignupResponse(session_token=result.session_token, handle=result.handle)


@router.post(
    "/{portal}/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        422: {"model": ErrorResponse, "description": "Account disabled"},
    },
    summary="Check the password and send a TFA code",
)
def login(
    request_data: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """
    First login step.

    Unknown email and wrong password return the same 401 response.
    """
    started = service.login(request_data.email, request_data.password)
    return LoginResponse(tfa_token=started.tfa_token)


@router.post(
    "/{portal}/tfa",
    response_model=SessionResponse,
    responses={
        **_BAD_TOKEN,
        403: {"model": ErrorResponse, "description": "Wrong TFA code; the token stays usable"},
        422: {"model": ErrorResponse, "description": "Account disabled"},
    },
    summary="Exchange a TFA token and code for a session",
)
def verify_tfa(
    request_data: TFARequest,
    service: AuthService = Depends(get_auth_service),
) -> SessionResponse:
    started = service.verify_tfa(
        request_data.tfa_token, request_data.tfa_code, remember_me=request_data.remember_me
    )
    return SessionResponse(
        session_token=started.session_token, preferred_language=started.preferred_language
    )


@router.post(
    "/{portal}/logout",
    response_model=MessageResponse,
    responses=_BAD_TOKEN,
    summary="Revoke the current session",
)
def logout(
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.logout(session_token)
    return MessageResponse(message="Logged out")


@router.get(
    "/{portal}/myinfo",
    response_model=MyInfoResponse,
    responses=_BAD_TOKEN,
    summary="Profile and roles of the session's user",
)
def get_my_info(
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MyInfoResponse:
    session = service.get_my_info(session_token)
    user = session.user
    return MyInfoResponse(
        handle=user.handle,
        email=user.email,
        display_name=user.display_name,
        preferred_language=user.preferred_language,
        home_region=user.home_region,
        roles=sorted(session.roles),
    )


@router.post(
    "/{portal}/set-language",
    response_model=MessageResponse,
    responses=_BAD_TOKEN,
    summary="Set the preferred language",
)
def set_language(
    request_data: SetLanguageRequest,
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.set_preferred_language(session_token, request_data.language)
    return MessageResponse(message="Preferred language updated")


@router.post(
    "/{portal}/change-password",
    response_model=MessageResponse,
    responses={
        **_BAD_TOKEN,
        401: {"model": ErrorResponse, "description": "Invalid session or current password"},
    },
    summary="Change password and revoke other sessions",
    description="The calling session stays valid; every other session of the user is revoked.",
)
def change_password(
    request_data: ChangePasswordRequest,
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.change_password(
        session_token, request_data.current_password, request_data.new_password
    )
    return MessageResponse(message="Password changed")


@router.post(
    "/{portal}/request-password-reset",
    response_model=MessageResponse,
    responses=_BAD_REQUEST,
    summary="Mail a password reset token",
    description="Always succeeds for a well-formed email so accounts cannot be enumerated.",
)
def request_password_reset(
    request_data: RequestPasswordResetRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.request_password_reset(request_data.email)
    return MessageResponse(message="If the account exists, a reset email has been sent")


@router.post(
    "/{portal}/complete-password-reset",
    response_model=MessageResponse,
    responses=_BAD_TOKEN,
    summary="Set a new password with a reset token",
    description="Consumes the token and revokes every session of the user.",
)
def complete_password_reset(
    request_data: CompletePasswordResetRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.complete_password_reset(request_data.reset_token, request_data.new_password)
    return MessageResponse(message="Password reset")


@router.post(
    "/{portal}/request-email-change",
    response_model=MessageResponse,
    responses={
        **_BAD_TOKEN,
        409: {"model": ErrorResponse, "description": "Email already in use"},
    },
    summary="Mail an email-change token to the new address",
)
def request_email_change(
    request_data: RequestEmailChangeRequest,
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.request_email_change(session_token, request_data.new_email)
    return MessageResponse(message="Verification email sent to the new address")


@router.post(
    "/{portal}/complete-email-change",
    response_model=MessageResponse,
    responses={
        **_BAD_TOKEN,
        409: {"model": ErrorResponse, "description": "Email claimed by another account"},
    },
    summary="Apply an email change",
    description="Swaps the email and revokes every session of the user.",
)
def complete_email_change(
    request_data: CompleteEmailChangeRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.complete_email_change(request_data.verification_token)
    return MessageResponse(message="Email changed")


_STATUS_CHANGE = {
    **_BAD_TOKEN,
    403: {"model": ErrorResponse, "description": "Caller may not manage users"},
    404: {"model": ErrorResponse, "description": "No such user on this portal"},
    422: {"model": ErrorResponse, "description": "Status already set or caller is the target"},
}


@router.post(
    "/{portal}/disable-user",
    response_model=MessageResponse,
    responses=_STATUS_CHANGE,
    summary="Disable a user and revoke their sessions",
)
def disable_user(
    request_data: UserStatusRequest,
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.disable_user(session_token, request_data.email)
    return MessageResponse(message="User disabled")


@router.post(
    "/{portal}/enable-user",
    response_model=MessageResponse,
    responses=_STATUS_CHANGE,
    summary="Re-enable a disabled user",
)
def enable_user(
    request_data: UserStatusRequest,
    session_token: str = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.enable_user(session_token, request_data.email)
    return MessageResponse(message="User enabled")
