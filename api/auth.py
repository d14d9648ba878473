"""
Authentication for the FastAPI API: bearer tokens, password hashing and
the dependency that resolves the calling user.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from api.config import config as api_config
from api.database import APIDatabaseService, get_db_service
from api.errors import (
    AccountInactiveError, InvalidTokenError, MissingTokenError,
    TokenExpiredError, UserNotFoundError
)
from api.models import is_object_id
from utilities.logger import AuditLogger

logger = structlog.get_logger(__name__)
audit = AuditLogger("api.auth")

# auto_error=False so a missing header maps to NO_TOKEN instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    """Identity carried inside a verified token."""
    user_id: str
    username: str
    expires_at: datetime


class CurrentUser(BaseModel):
    """Resolved identity attached to a protected request."""
    id: str
    username: str
    is_active: bool = True


class TokenManager:
    """Issues and verifies signed, time-limited bearer tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_days: int = 7
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_delta = timedelta(days=expire_days)

    def issue_token(self, user_id: str, username: str) -> str:
        """
        Produce a signed token for a user.

        Args:
            user_id: Identifier of the user
            username: Username, embedded for display purposes

        Returns:
            Encoded JWT
        """
        expire = datetime.now(timezone.utc) + self.expire_delta
        payload = {"user_id": str(user_id), "username": username, "exp": expire}
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: Optional[str]) -> TokenPayload:
        """
        Verify a token and return the identity it carries.

        Raises:
            MissingTokenError: No token was supplied
            TokenExpiredError: Token is past its expiry
            InvalidTokenError: Signature, format or claims are wrong
        """
        if not token:
            raise MissingTokenError()

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError() from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        user_id = claims.get("user_id")
        username = claims.get("username")
        if not user_id or not username or not is_object_id(str(user_id)):
            raise InvalidTokenError()

        return TokenPayload(
            user_id=str(user_id),
            username=username,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        )


class PasswordHasher:
    """One-way adaptive password hashing backed by bcrypt."""

    def __init__(self, rounds: int = 12):
        self.context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds
        )

    def hash_password(self, plaintext: str) -> str:
        return self.context.hash(plaintext)

    def verify_password(self, plaintext: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        try:
            return self.context.verify(plaintext, password_hash)
        except ValueError:
            # Malformed stored hash
            return False

    def dummy_verify(self) -> None:
        """Spend the time of a real verification when there is no user."""
        self.context.dummy_verify()


token_manager = TokenManager(
    secret_key=api_config.jwt_secret_key,
    algorithm=api_config.jwt_algorithm,
    expire_days=api_config.access_token_expire_days
)
password_hasher = PasswordHasher(rounds=api_config.bcrypt_rounds)


def get_token_manager() -> TokenManager:
    return token_manager


def get_password_hasher() -> PasswordHasher:
    return password_hasher


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tokens: TokenManager = Depends(get_token_manager),
    db_service: APIDatabaseService = Depends(get_db_service)
) -> CurrentUser:
    """
    Resolve the caller of a protected endpoint.

    Extracts the bearer token, verifies it, loads the user and rejects
    unknown or inactive accounts.
    """
    token = credentials.credentials if credentials else None

    try:
        payload = tokens.verify_token(token)
    except (MissingTokenError, TokenExpiredError, InvalidTokenError) as exc:
        audit.log_auth_failure(exc.code)
        raise

    user = await db_service.get_user_by_id(payload.user_id)
    if user is None:
        audit.log_auth_failure(UserNotFoundError.code, user_id=payload.user_id)
        raise UserNotFoundError()

    if not user.get("is_active", True):
        audit.log_auth_failure(AccountInactiveError.code, user_id=payload.user_id)
        raise AccountInactiveError()

    logger.debug("Authenticated request", user_id=payload.user_id)
    return CurrentUser(
        id=str(user["_id"]),
        username=user["username"],
        is_active=user.get("is_active", True)
    )
