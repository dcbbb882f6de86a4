import logging
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from app.core.config import Settings, settings
from app.core.exceptions import AuthenticationError
from app.utils.time import utcnow

logger = logging.getLogger("auth_service")

ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES]


class CredentialService:
    """Password hashing and bearer tokens for dashboard access."""

    def __init__(self, config: Settings = settings):
        self.secret_key = config.secret_key
        self.expire_minutes = config.access_token_expire_minutes
        self.rounds = config.bcrypt_rounds

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    def issue_token(self, account_id: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
        expire = utcnow() + (expires_delta or timedelta(minutes=self.expire_minutes))
        payload = {"sub": account_id, "email": email, "exp": expire}
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM)

    def validate_token(self, token: str) -> str:
        """Return the account id carried by a valid token."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[ALGORITHM])
        except JWTError:
            raise AuthenticationError("Invalid or expired token", code="INVALID_TOKEN")
        account_id = payload.get("sub")
        if not account_id:
            raise AuthenticationError("Invalid token", code="INVALID_TOKEN")
        return account_id


credential_service = CredentialService()
