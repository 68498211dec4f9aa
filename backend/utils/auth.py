"""
Authentication utilities
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import bcrypt
from datetime import datetime, timezone, timedelta
import os

from entitlements.errors import AuthenticationError

security = HTTPBearer()
JWT_SECRET = os.environ.get('JWT_SECRET', 'echotune-secret-key-change-in-production')
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_HOURS = float(os.environ.get('JWT_EXPIRES_HOURS', 5))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        return False

def create_token(user_id: str, email: str, role: str = "user") -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRES_HOURS)
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode a bearer token into the principal {id, email, role}"""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired", reason="INVALID_TOKEN")
    except jwt.InvalidTokenError:
        raise AuthenticationError(reason="INVALID_TOKEN")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(reason="INVALID_TOKEN")

    return {
        "id": str(user_id),
        "email": payload.get("email", ""),
        "role": str(payload.get("role") or "user").lower()
    }


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify JWT token and return the current principal"""
    return decode_token(credentials.credentials)

