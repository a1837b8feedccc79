"""
Security utilities for the Automail engine.

Includes:
- JWT access token generation and verification (dashboard-issued tokens)
- HTTP Basic check for the externally triggered cron entry point
- Fernet (AES) encryption/decryption for the provider credential vault
- FastAPI dependencies for authentication
"""

import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Optional

import jwt
from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends, HTTPException, status
from fastapi.security import (
    HTTPAuthorizationCredentials as HTTPAuthCredentials,
    HTTPBasic,
    HTTPBasicCredentials,
    HTTPBearer,
)
from pydantic import BaseModel

from app.config import get_settings

# JWT configuration
ALGORITHM = "HS256"

# HTTP Bearer for tenant-facing API endpoints
security_scheme = HTTPBearer(auto_error=False)

# HTTP Basic for the cron endpoint; auto_error off so we control the 401 body
cron_basic_scheme = HTTPBasic(auto_error=False, realm="Secure Area")


class TokenPayload(BaseModel):
    """JWT token payload structure."""
    sub: str  # user_id (tenant)
    email: str
    exp: datetime
    iat: datetime
    type: str


def create_access_token(user_id: str, email: str) -> str:
    """
    Create a JWT access token for a tenant.

    Args:
        user_id: Tenant user ID
        email: Tenant email

    Returns:
        Encoded JWT token
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": user_id,
        "email": email,
        "type": "access",
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> TokenPayload:
    """
    Verify and decode a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    email = payload.get("email")
    if user_id is None or email is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenPayload(
        sub=user_id,
        email=email,
        exp=datetime.fromtimestamp(payload.get("exp"), tz=timezone.utc),
        iat=datetime.fromtimestamp(payload.get("iat"), tz=timezone.utc),
        type=payload.get("type", ""),
    )


async def get_current_user(
    credentials: Optional[HTTPAuthCredentials] = Depends(security_scheme),
) -> TokenPayload:
    """
    FastAPI dependency to get the current tenant from the Bearer token.

    Raises:
        HTTPException: If token is missing, invalid, expired or not an access token
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_payload = verify_token(credentials.credentials)

    if token_payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_payload


def check_cron_credentials(username: str, password: str) -> bool:
    """Compare a credential pair against the configured cron credentials.

    Always False when the server has no cron credentials configured.
    """
    settings = get_settings()
    if not settings.CRON_USERNAME or not settings.CRON_PASSWORD:
        return False
    user_ok = secrets.compare_digest(username.encode(), settings.CRON_USERNAME.encode())
    pass_ok = secrets.compare_digest(password.encode(), settings.CRON_PASSWORD.encode())
    return user_ok and pass_ok


async def require_cron_auth(
    credentials: Optional[HTTPBasicCredentials] = Depends(cron_basic_scheme),
) -> str:
    """
    FastAPI dependency guarding the cron entry point.

    Returns:
        The authenticated cron username

    Raises:
        HTTPException: 401 with a Basic challenge when credentials are absent or wrong
    """
    if not credentials or not check_cron_credentials(credentials.username, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": 'Basic realm="Secure Area"'},
        )
    return credentials.username


class CredentialVault:
    """
    Manages encryption and decryption of provider credentials using Fernet (AES-128-CBC + HMAC).
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize the vault with an encryption key.

        Args:
            key: Fernet key (urlsafe base64). If None, uses ENCRYPTION_KEY from settings.

        Raises:
            ValueError: If no key is configured or the key is malformed
        """
        if key is None:
            key = get_settings().ENCRYPTION_KEY
        if not key:
            raise ValueError("ENCRYPTION_KEY is not configured")

        self.cipher = Fernet(key.encode() if isinstance(key, str) else key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string and return the token as text."""
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a vault token.

        Raises:
            ValueError: If decryption fails (corrupted value or rotated key)
        """
        try:
            return self.cipher.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Decryption failed - data may be corrupted or key is incorrect") from e


@lru_cache()
def get_vault() -> CredentialVault:
    """Get the process-wide credential vault."""
    return CredentialVault()
