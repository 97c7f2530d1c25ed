import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from auth import TokenService, UserIdentity

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"


@dataclass(frozen=True)
class RequestContext:
    session: Session
    tokens: TokenService
    user: Optional[UserIdentity] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    parts = header.strip().split(None, 1)
    if len(parts) != 2 or parts[0].lower() != BEARER_SCHEME:
        return None
    token = parts[1].strip()
    return token or None


class ContextBuilder:
    def __init__(self, tokens: TokenService) -> None:
        self.tokens = tokens

    def build(self, session: Session, authorization: Optional[str]) -> RequestContext:
        if not authorization or not authorization.strip():
            return RequestContext(session=session, tokens=self.tokens)

        token = extract_bearer_token(authorization)
        if token is None:
            logger.warning("context_anonymous: reason=malformed_authorization_header")
            return RequestContext(session=session, tokens=self.tokens)

        identity = self.tokens.verify(token)
        if identity is None:
            logger.warning("context_anonymous: reason=token_verification_failed")
            return RequestContext(session=session, tokens=self.tokens)

        return RequestContext(session=session, tokens=self.tokens, user=identity)
