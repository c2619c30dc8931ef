from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from jose import JWTError, jwt

from donchat.core.config import Settings
from donchat.core.errors import AuthenticationError


class IdentityVerifier(Protocol):
    """Resolves a bearer credential to the authenticated user id."""

    def verify(self, token: str) -> str: ...


class JWTIdentityVerifier:
    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_access_token(self, user_id: str, expires_delta: Optional[timedelta] = None) -> str:
        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        to_encode = {"exp": expire, "sub": str(user_id)}
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthenticationError() from exc

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError()
        return str(user_id)


def build_identity_verifier(settings: Settings) -> IdentityVerifier:
    if settings.AUTH_PROVIDER == "firebase":
        # firebase_admin is only initialised when it is the configured provider
        from donchat.core.firebase import FirebaseService

        return FirebaseService(settings)

    return JWTIdentityVerifier(
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        expire_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
