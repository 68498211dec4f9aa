"""
Entitlement Data Models

Pydantic models for account and checkout operations.
These define the structure of documents stored in MongoDB collections
and the request/response bodies of the API.
"""

from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List, Literal


# ==================== ACCOUNT MODELS ====================

class Account(BaseModel):
    """Identity record with optional pending one-time code"""
    id: str
    name: str
    email: str
    password: str
    role: Literal["user", "owner", "admin"] = "user"
    is_active: bool = False
    profile_picture: Optional[str] = None
    otp_code: Optional[str] = None
    otp_purpose: Optional[Literal["signup", "password_reset"]] = None
    otp_expires_at: Optional[str] = None  # ISO datetime string
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AccountResponse(BaseModel):
    """Account fields safe to return to clients"""
    id: str
    name: str
    email: str
    role: str
    profile_picture: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    role: Optional[str] = "user"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class OTCRequest(BaseModel):
    email: EmailStr
    purpose: Literal["signup", "password_reset"] = "signup"


class OTCVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)
    purpose: Literal["signup", "password_reset"] = "signup"


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)
    new_password: str


class AccountUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    profile_picture: Optional[str] = None
    new_password: Optional[str] = None
    old_password: Optional[str] = None
    role: Optional[str] = None


class AuthResponse(BaseModel):
    message: str
    token: str
    user: AccountResponse


# ==================== PURCHASE MODELS ====================

class PurchaseView(BaseModel):
    """Purchase fields returned to clients"""
    id: str
    status: str
    amount: float
    currency: str
    license_code: str = ""
    item_type: str
    item_id: str
    item_name: str = ""
    purchased_at: Optional[str] = None


class CheckoutRequest(BaseModel):
    item_type: str
    item_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    message: str
    purchase_id: str
    purchase: PurchaseView
    checkout_url: str = ""
    session_id: str = ""
    mock: bool = False
    already_purchased: bool = False


class ConfirmRequest(BaseModel):
    purchase_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    mock_success: bool = False


class ConfirmResponse(BaseModel):
    message: str
    purchase: PurchaseView
    already_confirmed: bool = False


class PurchaseListResponse(BaseModel):
    items: List[PurchaseView]
    count: int


# ==================== ACCESS MODELS ====================

class AccessResponse(BaseModel):
    item_type: str
    item_id: str
    allowed: bool


class DownloadResponse(BaseModel):
    message: str
    download_url: str


# ==================== SERIALIZERS ====================

def to_account_response(account: dict) -> AccountResponse:
    return AccountResponse(
        id=account["id"],
        name=account.get("name", ""),
        email=account["email"],
        role=account.get("role", "user"),
        profile_picture=account.get("profile_picture"),
        is_active=account.get("is_active") is not False,
        created_at=account.get("created_at"),
        updated_at=account.get("updated_at")
    )


def to_purchase_view(purchase: dict) -> PurchaseView:
    return PurchaseView(
        id=purchase["id"],
        status=purchase["status"],
        amount=purchase.get("amount", 0),
        currency=purchase.get("currency", "usd"),
        license_code=purchase.get("license_code") or "",
        item_type=purchase["item_type"],
        item_id=purchase["item_id"],
        item_name=purchase.get("item_name", ""),
        purchased_at=purchase.get("purchased_at")
    )
