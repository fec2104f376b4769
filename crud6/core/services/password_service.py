from typing import Optional

import bcrypt

from crud6.core.config import settings

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class PasswordHasher:
    """bcrypt password hashes; the cost factor travels inside each hash."""

    def __init__(self, rounds: Optional[int] = None):
        self.rounds = rounds or settings.PASSWORD_ROUNDS

    def hash(self, password: str) -> str:
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def verify(self, password: str, hashed: str) -> bool:
        if not isinstance(password, str) or not self.is_hashed(hashed):
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed salt or hash body
            return False

    def is_hashed(self, value: str) -> bool:
        return isinstance(value, str) and value.startswith(BCRYPT_PREFIXES)
