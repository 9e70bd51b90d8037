"""
Security and authentication
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param
from cryptography.fernet import Fernet
from medscribe.config import settings
from medscribe.core.exceptions import AuthenticationError
from medscribe.core.logging import get_logger

logger = get_logger(__name__)


class SecurityManager:
    """Token handling for the API"""

    def __init__(self, secret_key: str = None, algorithm: str = None):
        self.secret_key = secret_key or settings.api_secret_key
        self.algorithm = algorithm or settings.token_algorithm

    def create_access_token(self, data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        """Creates a JWT access token (tests and service accounts)"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
        to_encode.update({"exp": expire})
        if settings.jwt_issuer:
            to_encode.setdefault("iss", settings.jwt_issuer)
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verifies a JWT; returns its claims or None"""
        if not self.secret_key:
            logger.error("Token verification impossible: API_SECRET_KEY not configured")
            return None
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=settings.jwt_issuer,
                options={"verify_aud": False},
            )
        except JWTError as e:
            logger.warning(f"Token verification failed: {e}")
            return None
        if not payload.get("sub"):
            logger.warning("Token verification failed: token has no subject")
            return None
        return payload

    def generate_request_id(self) -> str:
        """Generates a unique request ID"""
        return secrets.token_urlsafe(16)


# Global security manager instance
security_manager = SecurityManager()


async def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Dependency for authenticated requests.
    Resolves the caller from the JWT bearer token in the "Authorization" header.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header:
        scheme, credentials = get_authorization_scheme_param(auth_header)
        if scheme.lower() == "bearer":
            token_payload = security_manager.verify_token(credentials)
            if token_payload:
                logger.info(f"Authenticated via JWT for subject: {token_payload.get('sub')}")
                return token_payload

    logger.warning("Authentication failed: No valid Bearer token provided.")
    raise AuthenticationError()


class DataEncryption:
    """Encryption-at-Rest for stored audio using Fernet."""

    def __init__(self, key: Optional[str]):
        self.fernet = Fernet(key.encode()) if key else None

    @property
    def enabled(self) -> bool:
        return self.fernet is not None

    def encrypt_data(self, data: bytes) -> bytes:
        """Encrypts data. Returns the input unchanged when no key is configured."""
        if not self.enabled:
            return data
        return self.fernet.encrypt(data)

    def decrypt_data(self, encrypted_data: bytes) -> bytes:
        """Decrypts data."""
        if not self.enabled:
            return encrypted_data
        return self.fernet.decrypt(encrypted_data)


# Global instance for data encryption
data_encryption = DataEncryption(settings.data_encryption_key)
