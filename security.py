import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


# --- Credentials ---
# Password hashing using bcrypt; the cost factor comes from settings
class PasswordHasher:
    def __init__(self, rounds: int = 10):
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        return self.context.verify(password, password_hash)

    # Spend about as long as a real verify, for logins with an unknown email
    def dummy_verify(self) -> bool:
        return self.context.dummy_verify()


# --- Session tokens ---
class TokenError(Exception):
    pass


class TokenExpiredError(TokenError):
    pass


class TokenInvalidError(TokenError):
    pass


# Identity carried by a session token
class Identity(BaseModel):
    user_id: int
    email: str


class TokenService:
    """
    Issues and verifies signed, time-limited bearer tokens (JWT).

    Claims: ``userId``, ``email``, ``iat`` and ``exp``. The signing secret is
    passed in from configuration.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", expires: timedelta = timedelta(hours=24)):
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.expires = expires

    def issue(self, user_id: int, email: str, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        claims = {
            "userId": user_id,
            "email": email,
            "iat": int(now.timestamp()),
            "exp": int((now + self.expires).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise TokenExpiredError("token has expired") from e
        except JWTError as e:
            raise TokenInvalidError("invalid token") from e

        try:
            return Identity(user_id=payload["userId"], email=payload["email"])
        except (KeyError, ValidationError) as e:
            raise TokenInvalidError("token is missing identity claims") from e
