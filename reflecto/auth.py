"""
User accounts and login sessions.

``AuthService`` is the session resolver the rest of the application relies
on: ``resolve_identity`` turns a bearer token into an ``Identity`` or
``None`` and never raises for a missing, unknown or expired token. It also
provides the small register/login/logout surface that issues those tokens.
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .domain import Conflict, Identity, Unauthenticated, ValidationError
from .storage import Database
from .utils import blank, make_id, mask_email, time_after, time_now

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MIN_PASSWORD_LENGTH = 6
PBKDF2_ITERATIONS = 120_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Hash a password with PBKDF2-SHA256. Returns ``salt$hexdigest``."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return hmac.compare_digest(hash_password(password, salt), stored)


def check_email(email: str) -> str:
    """Return the address in the one form stored everywhere (normalised, lowercase).

    Raises:
        ValidationError: Naming ``email`` when the address is malformed
    """
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationError("email", "Email is invalid")


def strip_bearer(token: Optional[str]) -> str:
    """Accept both bare tokens and ``Authorization: Bearer <token>`` values."""
    if not token:
        return ""
    token = token.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


class AuthService:
    """
    Handles user registration, login, logout and session resolution.

    Session tokens are handed to the client once; the database only keeps
    an HMAC digest of each token keyed by ``secret``.

    Attributes:
        db (Database): Shared store holding the users and sessions tables
        ttl_hours (float): Session lifetime
    """

    def __init__(self, db: Database, secret: str, ttl_hours: float = 720):
        self.db = db
        self.secret = secret.encode()
        self.ttl_hours = ttl_hours

    def _digest(self, token: str) -> str:
        return hmac.new(self.secret, token.encode(), hashlib.sha256).hexdigest()

    def register(self, email: str, password: str, name: Optional[str] = None) -> str:
        """
        Register a new user and return its id.

        Raises:
            ValidationError: If the email is malformed or taken, or the password is too short
        """
        email = check_email(email)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        uid = make_id("usr")
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone():
                raise ValidationError("email", "Email already exists")
            conn.execute(
                "INSERT INTO users (id, email, name, password_hash, created_time) VALUES (?, ?, ?, ?, ?)",
                (uid, email, name, hash_password(password), time_now()),
            )
        logger.info("Registered user %s (%s)", uid, mask_email(email))
        return uid

    def login(self, email: str, password: str) -> str:
        """
        Check credentials and open a new session.

        Returns:
            str: Session token for the ``Authorization`` header

        Raises:
            Unauthenticated: If the email is unknown or the password is wrong
        """
        try:
            email = check_email(email)
        except ValidationError:
            raise Unauthenticated("Invalid email or password")
        with self.db.read() as conn:
            row = conn.execute("SELECT id, password_hash FROM users WHERE email = ?", (email,)).fetchone()
        if row is None or not verify_password(password, row["password_hash"]):
            logger.info("Failed login for %s", mask_email(email))
            raise Unauthenticated("Invalid email or password")

        token = f"sess_{secrets.token_urlsafe(32)}"
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (token_digest, user_id, created_time, expires_time) VALUES (?, ?, ?, ?)",
                (self._digest(token), row["id"], time_now(), time_after(self.ttl_hours)),
            )
        logger.info("User %s logged in", row["id"])
        return token

    def resolve_identity(self, token: Optional[str]) -> Optional[Identity]:
        """Return the caller's identity, or None for anonymous/expired/unknown tokens."""
        token = strip_bearer(token)
        if not token:
            return None
        digest = self._digest(token)
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT user_id, expires_time FROM sessions WHERE token_digest = ?", (digest,)
            ).fetchone()
        if row is None:
            return None
        if row["expires_time"] <= time_now():
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM sessions WHERE token_digest = ?", (digest,))
            logger.debug("Expired session for user %s purged", row["user_id"])
            return None
        return Identity(row["user_id"])

    def logout(self, token: Optional[str]) -> bool:
        """Remove a session. Returns False when there was nothing to remove."""
        token = strip_bearer(token)
        if not token:
            return False
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sessions WHERE token_digest = ?", (self._digest(token),))
            return cursor.rowcount > 0

    def set_username(self, identity: Optional[Identity], username: Optional[str]) -> str:
        """
        Set the public handle used to list a user's public notebooks.

        Raises:
            Unauthenticated: No identity
            ValidationError: Missing or malformed username
            Conflict: Username already belongs to another user
        """
        if identity is None:
            raise Unauthenticated("You must be signed in to update your username")
        if blank(username):
            raise ValidationError("username", "Username is required")
        username = username.strip()
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "username", "Username can only contain letters, numbers, underscores, and hyphens"
            )
        with self.db.transaction() as conn:
            owner = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
            if owner is not None and owner["id"] != identity.user_id:
                raise Conflict("Username is already taken")
            conn.execute("UPDATE users SET username = ? WHERE id = ?", (username, identity.user_id))
        return username
