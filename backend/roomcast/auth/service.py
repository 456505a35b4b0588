"""Credential storage and bearer-token verification.

Two services live here:
1. UserStore — DuckDB-backed accounts with PBKDF2-hashed passwords
2. TokenService — issues and verifies the signed, time-limited JWTs that
   clients present when opening a realtime connection
"""
import hashlib
import hmac
import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import duckdb
import jwt

from roomcast.config import get_config

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000
SALT_BYTES = 16
HASH_SCHEME = "pbkdf2_sha256"


class AuthError(Exception):
    """Base class for authentication failures."""


class UsernameTaken(AuthError):
    """Registration attempted with a username that already exists."""


class InvalidCredentials(AuthError):
    """Username/password pair did not match a stored account."""


class AuthRejection(AuthError):
    """A bearer credential was missing, malformed, expired or forged."""


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Hash a password as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""
    salt = secrets.token_bytes(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def check_password(password: str, encoded: str) -> bool:
    """Compare a password against a stored hash in constant time."""
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        logger.warning("Unreadable password hash encountered")
        return False
    if scheme != HASH_SCHEME:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(digest, expected)


class UserStore:
    """Singleton account store in DuckDB.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["UserStore"] = None
    _db_path: str = "users.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "UserStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (used by tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        with self._lock:
            self._get_connection().execute("""
                CREATE TABLE IF NOT EXISTS users (
                    username VARCHAR PRIMARY KEY,
                    password_hash VARCHAR NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            """)

    def create_user(self, username: str, password: str) -> None:
        """Store a new account.

        Raises:
            UsernameTaken: If the username is already registered.
        """
        password_hash = hash_password(password)
        created_at = datetime.now(timezone.utc).replace(tzinfo=None)
        with self._lock:
            conn = self._get_connection()
            exists = conn.execute(
                "SELECT 1 FROM users WHERE username = ?", [username]
            ).fetchone()
            if exists:
                raise UsernameTaken(username)
            conn.execute(
                "INSERT INTO users (username, password_hash, created_at) VALUES (?, ?, ?)",
                [username, password_hash, created_at]
            )
        logger.info("Registered user %s", username)

    def verify_password(self, username: str, password: str) -> bool:
        """Return True if the username exists and the password matches."""
        with self._lock:
            row = self._get_connection().execute(
                "SELECT password_hash FROM users WHERE username = ?", [username]
            ).fetchone()
        if row is None:
            return False
        return check_password(password, row[0])

    def authenticate(self, username: str, password: str) -> str:
        """Return ``username`` if the credentials match.

        Raises:
            InvalidCredentials: If the user is unknown or the password is wrong.
        """
        if not self.verify_password(username, password):
            raise InvalidCredentials(username)
        return username

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


class TokenService:
    """Issues and verifies HS256-signed bearer tokens.

    The token carries the username as ``sub`` and expires after
    ``expire_minutes``. verify() is the identity verifier used at realtime
    connection setup.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, username: str) -> str:
        """Sign a token for ``username``."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": username,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> str:
        """Return the verified username carried by ``token``.

        Raises:
            AuthRejection: If the token is missing, expired, forged or
                does not name a user.
        """
        if not token:
            raise AuthRejection("No token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise AuthRejection("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthRejection(f"Invalid token: {e}") from e

        username = payload.get("sub")
        if not isinstance(username, str) or not username:
            raise AuthRejection("Token has no subject")
        return username


def get_token_service() -> TokenService:
    """Build a TokenService from the current configuration."""
    config = get_config()
    return TokenService(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
        expire_minutes=config.auth.token_expire_minutes,
    )
