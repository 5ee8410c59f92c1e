"""
Password hashing utilities.

New hashes are bcrypt ($2b$).  Verification also accepts werkzeug
(scrypt/pbkdf2) hashes, the format used by accounts imported from the
legacy Mesa de Partes database.
"""

import bcrypt
from werkzeug.security import check_password_hash

BCRYPT_ROUNDS = 12


def hash_password(plain_password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against a bcrypt or werkzeug hash."""
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$", "$2y$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)
