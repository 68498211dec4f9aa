"""
Entitlements Configuration and Constants

OTC policy, license code format, asset types and error messages are defined here.
Deployment-specific values (timeouts, URLs) are read from the environment.
"""

import os

# ==================== ONE-TIME CODES ====================
OTC_LENGTH = 4
OTC_EXPIRY_MINUTES = 10

OTC_PURPOSE_SIGNUP = "signup"
OTC_PURPOSE_PASSWORD_RESET = "password_reset"
OTC_PURPOSES = (OTC_PURPOSE_SIGNUP, OTC_PURPOSE_PASSWORD_RESET)

# Message templates use {{variable}} placeholders
OTC_MESSAGES = {
    OTC_PURPOSE_SIGNUP: {
        "subject": "EchoTune account verification OTP",
        "intro": "Use this OTP to verify your EchoTune account.",
    },
    OTC_PURPOSE_PASSWORD_RESET: {
        "subject": "EchoTune password reset OTP",
        "intro": "Use this OTP to reset your EchoTune account password.",
    },
}

OTC_EMAIL_HTML = """
<div style="font-family: Arial, sans-serif; line-height: 1.6; color: #111827;">
    <p>Hi {{name}},</p>
    <p>{{intro}}</p>
    <p style="font-size: 24px; font-weight: 700; letter-spacing: 4px;">{{code}}</p>
    <p>This OTP expires in {{minutes}} minutes.</p>
    <p>If you did not request this, you can ignore this email.</p>
    <p>Team EchoTune</p>
</div>
"""

# ==================== ACCOUNTS ====================
ROLE_USER = "user"
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_OWNER, ROLE_ADMIN)

# Roles a caller may pick for themselves at registration
SELF_SERVICE_ROLES = (ROLE_USER, ROLE_OWNER)

MIN_PASSWORD_LENGTH = 8

# ==================== ASSETS ====================
# item_type -> collection name
ASSET_COLLECTIONS = {
    "song": "songs",
    "content": "contents",
}
ITEM_TYPES = tuple(ASSET_COLLECTIONS.keys())

# ==================== PURCHASES ====================
PURCHASE_PENDING = "pending"
PURCHASE_PAID = "paid"
PURCHASE_FAILED = "failed"

DEFAULT_CURRENCY = "usd"

LICENSE_PREFIX = "ECH"
LICENSE_RANDOM_LENGTH = 6
LICENSE_CODE_ATTEMPTS = 3

# ==================== DEPENDENCY TIMEOUTS ====================
GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", 15))
NOTIFY_TIMEOUT_SECONDS = float(os.environ.get("NOTIFY_TIMEOUT_SECONDS", 20))

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "INVALID_INPUT": "Request is missing or has malformed fields.",
    "INVALID_ITEM_TYPE": "Invalid item type.",
    "INVALID_OTC_PURPOSE": "Invalid OTP purpose.",
    "WEAK_PASSWORD": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
    "INVALID_CREDENTIALS": "Invalid credentials",
    "INVALID_TOKEN": "Invalid or expired token",
    "FORBIDDEN": "Forbidden",
    "NOT_FOUND": "Not found",
    "CONFLICT": "Request conflicts with current state",
    "INVALID_STATE": "Request is not valid in the current state",
    "ACCOUNT_NOT_VERIFIED": "Account is not verified. Please verify OTP first.",
    "ROLE_NOT_ALLOWED": "This account is not allowed for this login",
    "OLD_PASSWORD_REQUIRED": "Old password is required",
    "ACCOUNT_NOT_FOUND": "User not found",
    "ASSET_NOT_FOUND": "Item not found",
    "PURCHASE_NOT_FOUND": "Purchase not found",
    "DOWNLOAD_UNAVAILABLE": "Download URL not available",
    "ACCOUNT_EXISTS": "User already exists",
    "EMAIL_IN_USE": "Email already in use",
    "SELF_PURCHASE": "Owner cannot purchase own item",
    "LICENSE_CODE_COLLISION": "License code already assigned to another purchase",
    "NO_ACTIVE_CODE": "No active OTP found. Please request a new OTP.",
    "PURPOSE_MISMATCH": "OTP purpose mismatch. Request a new OTP.",
    "CODE_EXPIRED": "OTP expired. Please request a new OTP.",
    "INVALID_CODE": "Invalid OTP",
    "ALREADY_VERIFIED": "Account is already verified",
    "PAYMENT_NOT_CONFIRMED": "Payment is not completed yet",
    "PURCHASE_REQUIRED": "Purchase required before download",
    "DELIVERY_UNAVAILABLE": "Unable to send OTP email. Please request a new OTP later.",
    "GATEWAY_NOT_CONFIGURED": "Payment gateway is not configured",
    "GATEWAY_UNAVAILABLE": "Payment gateway is unavailable",
    "DEPENDENCY_UNAVAILABLE": "A required service is unavailable",
    "INTERNAL_ERROR": "Internal server error",
}


def public_app_url() -> str:
    """Base URL used to build default checkout return URLs."""
    return os.environ.get("PUBLIC_APP_URL", "http://localhost:3000").rstrip("/")
