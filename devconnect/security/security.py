from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from devconnect.core.config import settings
from devconnect.core.logger import get_logger

logger = get_logger(__name__)


def create_jwt_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    token_type: str = "access",
) -> str:
    """
    Create a signed JWT token with subject, expiry, and type.

    Tokens are normally issued by the auth service; this mirrors its format.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.utcnow() + expires_delta
    payload: Dict[str, Any] = {
        "sub": subject,
        "exp": expire,
        "type": token_type,
    }
    encoded = jwt.encode(
        payload,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    logger.debug("Created %s token for subject=%s expires=%s", token_type, subject, expire.isoformat())
    return encoded


def decode_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode a JWT and return its payload if valid, otherwise None.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return payload
    except JWTError as e:
        logger.warning("JWT decode error: %s", str(e))
        return None
