"""Authentication API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, status
import structlog

from agency_crm.api.dependencies import (
    get_client_metadata,
    get_current_account,
    get_session_manager,
)
from agency_crm.models.account import Account, ClientMetadata
from agency_crm.models.auth import (
    AccountProfile,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from agency_crm.services.session_manager import SessionManager

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

FORGOT_PASSWORD_MESSAGE = "If the email exists, a reset link has been sent"


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    session_manager: SessionManager = Depends(get_session_manager),
) -> RegisterResponse:
    """Register a new account with the default role.

    Raises:
        409: If the email is already registered
    """
    user = await session_manager.register(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return RegisterResponse(user=user)


@router.post("/login")
async def login(
    request: LoginRequest,
    client: ClientMetadata = Depends(get_client_metadata),
    session_manager: SessionManager = Depends(get_session_manager),
) -> LoginResponse:
    """Login with email and password.

    Returns:
        LoginResponse with the account profile and a token pair

    Raises:
        401: Invalid credentials, deactivated or locked account
    """
    return await session_manager.login(request.email, request.password, client)


@router.post("/refresh", response_model_exclude_none=True)
async def refresh(
    request: RefreshRequest,
    client: ClientMetadata = Depends(get_client_metadata),
    session_manager: SessionManager = Depends(get_session_manager),
) -> RefreshResponse:
    """Exchange a refresh token for a new access token.

    The refresh token is only replaced when rotation is enabled, in which
    case the response also carries ``refreshToken``.
    """
    return await session_manager.refresh_access_token(request.refresh_token, client)


@router.post("/logout")
async def logout(
    request: Optional[LogoutRequest] = None,
    session_manager: SessionManager = Depends(get_session_manager),
) -> MessageResponse:
    """Revoke the given refresh token. Always succeeds, even without a body."""
    if request is not None and request.refresh_token:
        await session_manager.logout(request.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/me")
async def get_me(
    current_account: Account = Depends(get_current_account),
) -> AccountProfile:
    """Get the authenticated account's profile."""
    return AccountProfile.from_account(current_account)


@router.patch("/me")
async def update_me(
    request: UpdateProfileRequest,
    current_account: Account = Depends(get_current_account),
    session_manager: SessionManager = Depends(get_session_manager),
) -> AccountProfile:
    """Update name fields of the authenticated account."""
    return await session_manager.update_profile(
        current_account.id,
        first_name=request.first_name,
        last_name=request.last_name,
        display_name=request.display_name,
    )


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    current_account: Account = Depends(get_current_account),
    session_manager: SessionManager = Depends(get_session_manager),
) -> MessageResponse:
    """Change the password and sign out every session of the account.

    Raises:
        401: If the current password is wrong
    """
    await session_manager.change_password(
        current_account.id, request.current_password, request.new_password
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    session_manager: SessionManager = Depends(get_session_manager),
) -> MessageResponse:
    """Request a reset link; the response never reveals whether the email exists."""
    await session_manager.forgot_password(request.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    session_manager: SessionManager = Depends(get_session_manager),
) -> MessageResponse:
    """Set a new password with a reset token.

    Raises:
        401: If the token is unknown, expired or already used
    """
    await session_manager.reset_password(request.token, request.password)
    return MessageResponse(message="Password reset successfully")
