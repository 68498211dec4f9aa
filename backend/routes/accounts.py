"""
Account routes - registration, OTP verification, password recovery, login
"""
from fastapi import APIRouter, Depends, Response

from entitlements.models import (
    RegisterRequest,
    LoginRequest,
    OTCRequest,
    OTCVerifyRequest,
    PasswordResetRequest,
    PasswordResetConfirm,
    AccountUpdateRequest,
    AuthResponse,
    to_account_response,
)
from routes.deps import get_account_service
from utils.auth import get_current_user

accounts_router = APIRouter(tags=["Accounts"])


def _auth_response(result: dict) -> AuthResponse:
    return AuthResponse(
        message=result["message"],
        token=result["token"],
        user=to_account_response(result["account"])
    )


@accounts_router.post("/register")
async def register(data: RegisterRequest, response: Response, service=Depends(get_account_service)):
    """Create an inactive account and email a signup OTP"""
    result = await service.register(data.name, data.email, data.password, data.role)
    response.status_code = 201 if result.pop("created") else 200
    return result


@accounts_router.post("/verify-otp")
async def verify_otp(data: OTCVerifyRequest, service=Depends(get_account_service)):
    result = await service.verify_otp(data.email, data.otp, data.purpose)
    if "token" in result:
        return _auth_response(result)
    return result


@accounts_router.post("/resend-otp")
async def resend_otp(data: OTCRequest, service=Depends(get_account_service)):
    return await service.resend_otp(data.email, data.purpose)


@accounts_router.post("/request-password-reset")
async def request_password_reset(data: PasswordResetRequest, service=Depends(get_account_service)):
    return await service.request_password_reset(data.email)


@accounts_router.post("/reset-password")
async def reset_password(data: PasswordResetConfirm, service=Depends(get_account_service)):
    return await service.reset_password(data.email, data.otp, data.new_password)


@accounts_router.post("/login", response_model=AuthResponse)
async def login(data: LoginRequest, service=Depends(get_account_service)):
    return _auth_response(await service.login(data.email, data.password))


@accounts_router.post("/login/user", response_model=AuthResponse)
async def login_user(data: LoginRequest, service=Depends(get_account_service)):
    return _auth_response(await service.login(data.email, data.password, allowed_roles=("user",)))


@accounts_router.post("/login/owner", response_model=AuthResponse)
async def login_owner(data: LoginRequest, service=Depends(get_account_service)):
    return _auth_response(await service.login(data.email, data.password, allowed_roles=("owner", "admin")))


@accounts_router.get("/me")
async def get_me(user: dict = Depends(get_current_user), service=Depends(get_account_service)):
    account = await service.get_me(user)
    return {"user": to_account_response(account)}


@accounts_router.put("/{account_id}")
async def update_account(
    account_id: str,
    data: AccountUpdateRequest,
    user: dict = Depends(get_current_user),
    service=Depends(get_account_service)
):
    account = await service.update_account(user, account_id, data.model_dump(exclude_none=True))
    return {"message": "User updated successfully", "user": to_account_response(account)}
