import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=1)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # unrecognised or corrupt stored hash
        return False


@dataclass(frozen=True)
class UserIdentity:
    id: str
    email: str


class TokenService:
    """Signs and verifies bearer tokens.

    The signing secret stays on this instance; callers only ever see
    tokens and decoded identities.
    """

    def __init__(
        self,
        secret: str,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        algorithm: str = ALGORITHM,
    ) -> None:
        if not secret:
            raise ValueError("Token secret cannot be empty")
        self._secret = secret
        self.ttl = ttl
        self.algorithm = algorithm

    def __repr__(self) -> str:
        return f"TokenService(algorithm={self.algorithm!r}, ttl={self.ttl!r})"

    def issue(self, identity: UserIdentity) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": identity.id,
            "email": identity.email,
            "iat": now,
            "exp": now + self.ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Optional[UserIdentity]:
        if not token:
            return None
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except JWTError as exc:
            logger.debug(f"token_rejected: reason={type(exc).__name__}")
            return None

        user_id = claims.get("userId")
        email = claims.get("email")
        if not isinstance(user_id, str) or not isinstance(email, str):
            logger.debug("token_rejected: reason=missing_claims")
            return None
        if not user_id or not email:
            logger.debug("token_rejected: reason=empty_claims")
            return None
        return UserIdentity(id=user_id, email=email)
