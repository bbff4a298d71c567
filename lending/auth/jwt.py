from jose import JWTError, jwt

from lending.core.config import settings

__all__ = ["JWTError", "decode_token"]


def decode_token(token: str) -> dict:
    """Verify and decode a bearer token issued by the identity provider."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
