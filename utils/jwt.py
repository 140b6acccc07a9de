from datetime import datetime, timedelta
from jose import jwt, JWTError
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_MINUTES
from app.ledger import is_address

# =========================
# CONFIG
# =========================

security = HTTPBearer(auto_error=False)


def _unauthenticated(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": {"code": "UNAUTHENTICATED", "message": message}},
    )

# =========================
# SIGNER TOKENS
# =========================

def create_token(address: str, expire_minutes: int = JWT_EXPIRE_MINUTES) -> str:
    """Issues a signer token whose `address` claim is the transaction sender."""
    payload = {
        "address": address.lower(),
        "exp": datetime.utcnow() + timedelta(minutes=expire_minutes),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

# =========================
# DECODE
# =========================

def decode_token(token: str) -> dict:
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])

# =========================
# SENDER IDENTITY (FASTAPI DEPENDENCY)
# =========================

def verify_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> dict:
    if credentials is None:
        raise _unauthenticated("Missing signer token")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise _unauthenticated("Invalid or expired token")

    if not is_address(payload.get("address")):
        raise _unauthenticated("Token does not name a valid address")
    payload["address"] = payload["address"].lower()
    payload["token"] = credentials.credentials
    return payload
