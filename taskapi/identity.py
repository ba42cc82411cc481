import logging
import re
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

STATUS_FORCE_CHANGE_PASSWORD = "FORCE_CHANGE_PASSWORD"
STATUS_CONFIRMED = "CONFIRMED"
TOKEN_ALGORITHM = "HS256"


class IdentityProviderError(Exception):
    """Base class for failures reported by the identity provider."""


class UsernameExistsError(IdentityProviderError):
    pass


class InvalidPasswordError(IdentityProviderError):
    pass


class InvalidParameterError(IdentityProviderError):
    pass


class NotAuthorizedError(IdentityProviderError):
    pass


class UserNotConfirmedError(IdentityProviderError):
    pass


class UserNotFoundError(IdentityProviderError):
    pass


class CodeMismatchError(IdentityProviderError):
    pass


class ExpiredCodeError(IdentityProviderError):
    pass


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    id_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class UserProfile:
    username: str
    sub: str
    email: str
    name: str
    email_verified: bool


@dataclass(frozen=True)
class CodeDelivery:
    destination: str
    medium: str = "EMAIL"


class IdentityProvider(Protocol):
    def init(self) -> None: ...

    def admin_create_user(self, username: str, *, email: str, name: str) -> UserProfile: ...

    def admin_set_user_password(self, username: str, password: str, *, permanent: bool) -> None: ...

    def admin_delete_user(self, username: str) -> None: ...

    def initiate_auth(self, username: str, password: str) -> AuthTokens: ...

    def get_user(self, access_token: str) -> UserProfile: ...

    def forgot_password(self, username: str) -> CodeDelivery: ...

    def confirm_forgot_password(self, username: str, code: str, new_password: str) -> None: ...


def check_password_policy(password: str) -> None:
    if len(password) < 8:
        raise InvalidPasswordError("Password must be at least 8 characters long")
    if not re.search(r"[a-z]", password):
        raise InvalidPasswordError("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", password):
        raise InvalidPasswordError("Password must contain an uppercase letter")
    if not re.search(r"[0-9]", password):
        raise InvalidPasswordError("Password must contain a number")


def mask_destination(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}" if domain else "***"


def log_reset_code(username: str, code: str) -> None:
    logger.info("Password reset code for %s: %s", username, code)


class LocalIdentityProvider:
    def __init__(
        self,
        db_path: str,
        *,
        secret_key: str,
        user_pool_id: str,
        client_id: str,
        access_token_ttl_seconds: int = 3600,
        refresh_token_ttl_seconds: int = 30 * 24 * 3600,
        reset_code_ttl_seconds: int = 3600,
        code_sink: Callable[[str, str], None] | None = None,
    ):
        self.db_path = db_path
        self.secret_key = secret_key
        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.access_token_ttl = timedelta(seconds=access_token_ttl_seconds)
        self.refresh_token_ttl = timedelta(seconds=refresh_token_ttl_seconds)
        self.reset_code_ttl = timedelta(seconds=reset_code_ttl_seconds)
        self.code_sink = code_sink or log_reset_code
        self.pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise IdentityProviderError(f"identity store error: {exc}") from exc
        finally:
            conn.close()

    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    username TEXT PRIMARY KEY,
                    sub TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL,
                    name TEXT NOT NULL,
                    email_verified INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    password_hash TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reset_codes (
                    username TEXT PRIMARY KEY,
                    code_hash TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );
                """
            )

    def _get_row(self, conn: sqlite3.Connection, username: str) -> sqlite3.Row:
        row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            raise UserNotFoundError("User does not exist.")
        return row

    @staticmethod
    def _profile(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            username=row["username"],
            sub=row["sub"],
            email=row["email"],
            name=row["name"],
            email_verified=bool(row["email_verified"]),
        )

    def admin_create_user(self, username: str, *, email: str, name: str) -> UserProfile:
        if not username or "@" not in email:
            raise InvalidParameterError("Invalid email address format.")
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO users(username, sub, email, name, email_verified, status, password_hash, created_at)
                    VALUES(?, ?, ?, ?, ?, ?, NULL, ?)
                    """,
                    (
                        username,
                        str(uuid.uuid4()),
                        email,
                        name,
                        1,
                        STATUS_FORCE_CHANGE_PASSWORD,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise UsernameExistsError("An account with the given email already exists.") from exc
            row = self._get_row(conn, username)
        return self._profile(row)

    def admin_set_user_password(self, username: str, password: str, *, permanent: bool) -> None:
        check_password_policy(password)
        status = STATUS_CONFIRMED if permanent else STATUS_FORCE_CHANGE_PASSWORD
        with self._connect() as conn:
            self._get_row(conn, username)
            conn.execute(
                "UPDATE users SET password_hash = ?, status = ? WHERE username = ?",
                (self.pwd_context.hash(password), status, username),
            )

    def admin_delete_user(self, username: str) -> None:
        with self._connect() as conn:
            self._get_row(conn, username)
            conn.execute("DELETE FROM users WHERE username = ?", (username,))
            conn.execute("DELETE FROM reset_codes WHERE username = ?", (username,))

    def _issue(self, row: sqlite3.Row, token_use: str, ttl: timedelta, **claims) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": row["sub"],
            "iss": self.user_pool_id,
            "aud": self.client_id,
            "token_use": token_use,
            "username": row["username"],
            "iat": now,
            "exp": now + ttl,
            "jti": str(uuid.uuid4()),
            **claims,
        }
        return jwt.encode(payload, self.secret_key, algorithm=TOKEN_ALGORITHM)

    def initiate_auth(self, username: str, password: str) -> AuthTokens:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None or not row["password_hash"]:
            raise NotAuthorizedError("Incorrect username or password.")
        if not self.pwd_context.verify(password, row["password_hash"]):
            raise NotAuthorizedError("Incorrect username or password.")
        if row["status"] != STATUS_CONFIRMED:
            raise UserNotConfirmedError("User is not confirmed.")

        return AuthTokens(
            access_token=self._issue(row, "access", self.access_token_ttl),
            id_token=self._issue(
                row,
                "id",
                self.access_token_ttl,
                email=row["email"],
                name=row["name"],
                email_verified=bool(row["email_verified"]),
            ),
            refresh_token=self._issue(row, "refresh", self.refresh_token_ttl),
            expires_in=int(self.access_token_ttl.total_seconds()),
        )

    def get_user(self, access_token: str) -> UserProfile:
        try:
            claims = jwt.decode(
                access_token,
                self.secret_key,
                algorithms=[TOKEN_ALGORITHM],
                audience=self.client_id,
                issuer=self.user_pool_id,
            )
        except ExpiredSignatureError as exc:
            raise NotAuthorizedError("Access Token has expired") from exc
        except JWTError as exc:
            raise NotAuthorizedError("Invalid Access Token") from exc
        if claims.get("token_use") != "access":
            raise NotAuthorizedError("Invalid Access Token")

        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE sub = ?", (claims.get("sub"),)).fetchone()
        if row is None:
            raise NotAuthorizedError("User does not exist.")
        return self._profile(row)

    def forgot_password(self, username: str) -> CodeDelivery:
        code = f"{secrets.randbelow(1_000_000):06d}"
        expires_at = datetime.now(timezone.utc) + self.reset_code_ttl
        with self._connect() as conn:
            row = self._get_row(conn, username)
            conn.execute(
                "INSERT OR REPLACE INTO reset_codes(username, code_hash, expires_at) VALUES(?, ?, ?)",
                (username, self.pwd_context.hash(code), expires_at.isoformat()),
            )
        self.code_sink(username, code)
        return CodeDelivery(destination=mask_destination(row["email"]))

    def confirm_forgot_password(self, username: str, code: str, new_password: str) -> None:
        with self._connect() as conn:
            self._get_row(conn, username)
            pending = conn.execute(
                "SELECT code_hash, expires_at FROM reset_codes WHERE username = ?", (username,)
            ).fetchone()
        if pending is None or not self.pwd_context.verify(code, pending["code_hash"]):
            raise CodeMismatchError("Invalid verification code provided, please try again.")
        if datetime.fromisoformat(pending["expires_at"]) < datetime.now(timezone.utc):
            raise ExpiredCodeError("Invalid code provided, please request a code again.")
        check_password_policy(new_password)

        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, status = ? WHERE username = ?",
                (self.pwd_context.hash(new_password), STATUS_CONFIRMED, username),
            )
            conn.execute("DELETE FROM reset_codes WHERE username = ?", (username,))
