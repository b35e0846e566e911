"""Identity provider and auth gate.

IdentityProvider keeps users in the ``user`` collection and opaque session
tokens in the ``session`` collection. AuthGate decides, for one requested
path, whether the caller may see it; it re-resolves the session on every
check so a stale decision is never reused across routes.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlencode

from bson import ObjectId
from pymongo.errors import PyMongoError

from config import AUTH_SALT, DENIED_PATH, LOGIN_PATH, SESSION_TTL_HOURS
from database import as_aware, create_document, utcnow
from errors import AuthRequired, StorefrontError, ValidationError
from schemas import AuthSession, User, UserIdentity

logger = logging.getLogger(__name__)

ACCOUNT_ROLES = ("customer", "shop_admin", "admin")
DENIED_NOTICE = "You do not have access to this page"


def derive_role(claims: Optional[dict]) -> str:
    """Role from provider claims: ``role`` first, then ``user_metadata.role``."""
    if not claims:
        return "guest"
    role = claims.get("role") or (claims.get("user_metadata") or {}).get("role")
    if role in ACCOUNT_ROLES:
        return role
    # "user", unknown or missing roles on a signed-in account
    return "customer"


def hash_password(pw: str, salt: str = AUTH_SALT) -> str:
    return hashlib.pbkdf2_hmac("sha256", pw.encode(), salt.encode(), 100_000).hex()


def guest_session() -> AuthSession:
    return AuthSession(role="guest")


class IdentityProvider:
    def __init__(self, db, salt: str = AUTH_SALT, ttl_hours: int = SESSION_TTL_HOURS):
        self.db = db
        self.salt = salt
        self.ttl = timedelta(hours=ttl_hours)

    def _session_for(self, user: dict, token: str) -> AuthSession:
        return AuthSession(
            current_user=UserIdentity(id=str(user["_id"]), email=user["email"], name=user.get("name")),
            role=derive_role(user),
            token=token,
        )

    def _issue(self, user: dict) -> AuthSession:
        token = secrets.token_urlsafe(32)
        now = utcnow()
        self.db["session"].insert_one({
            "token": token,
            "user_id": str(user["_id"]),
            "created_at": now,
            "expires_at": now + self.ttl,
        })
        return self._session_for(user, token)

    def sign_up(self, name: str, email: str, password: str, role: str = "customer") -> AuthSession:
        if len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        if role not in ACCOUNT_ROLES:
            raise ValidationError(f"Invalid role: {role}")
        if self.db["user"].find_one({"email": email.lower()}):
            raise ValidationError("Email already registered")
        user = User(
            name=name,
            email=email.lower(),
            password_hash=hash_password(password, self.salt),
            role=role,
        )
        user_id = create_document("user", user, database=self.db)
        logger.info("Registered user %s", user_id)
        return self._issue(self.db["user"].find_one({"_id": ObjectId(user_id)}))

    def sign_in(self, email: str, password: str) -> AuthSession:
        user = self.db["user"].find_one({"email": email.lower()})
        if not user or user.get("password_hash") != hash_password(password, self.salt):
            raise AuthRequired("Invalid credentials")
        if not user.get("is_active", True):
            raise AuthRequired("Account is disabled")
        return self._issue(user)

    def sign_out(self, token: Optional[str]) -> None:
        if token:
            self.db["session"].delete_many({"token": token})

    def get_session(self, token: Optional[str]) -> Optional[AuthSession]:
        """The session for a token, or None when there is none (or it expired)."""
        if not token:
            return None
        row = self.db["session"].find_one({"token": token})
        if not row:
            return None
        if as_aware(row["expires_at"]) <= utcnow():
            self.db["session"].delete_one({"_id": row["_id"]})
            return None
        user = self.db["user"].find_one({"_id": ObjectId(row["user_id"])})
        if not user or not user.get("is_active", True):
            return None
        return self._session_for(user, token)


class GateState(str, Enum):
    CHECKING = "checking"
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"
    AUTHORIZED = "authorized"


class Requirement(str, Enum):
    NONE = "none"
    AUTHENTICATED = "authenticated"
    SHOP_ADMIN = "shop_admin"
    ADMIN = "admin"


def role_satisfies(role: str, requirement: Requirement) -> bool:
    if requirement == Requirement.ADMIN:
        return role == "admin"
    if requirement == Requirement.SHOP_ADMIN:
        return role in ("shop_admin", "admin")
    if requirement == Requirement.AUTHENTICATED:
        return role != "guest"
    return True


@dataclass
class GateDecision:
    state: GateState
    session: AuthSession
    redirect_to: Optional[str] = None
    notice: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.state == GateState.AUTHORIZED


class AuthGate:
    def __init__(self, resolve_session: Callable[[], Optional[AuthSession]],
                 login_path: str = LOGIN_PATH, denied_path: str = DENIED_PATH, notifier=None):
        self.resolve_session = resolve_session
        self.login_path = login_path
        self.denied_path = denied_path
        self.notifier = notifier
        self.state = GateState.CHECKING

    def login_redirect(self, path: str) -> str:
        return f"{self.login_path}?{urlencode({'next': path})}"

    def check(self, path: str, requirement: Requirement = Requirement.NONE) -> GateDecision:
        self.state = GateState.CHECKING
        try:
            session = self.resolve_session()
        except (StorefrontError, PyMongoError):
            logger.exception("Session resolution failed for %s", path)
            if self.notifier is not None:
                self.notifier.error("Authentication error. Please try again.")
            session = None

        if requirement == Requirement.NONE:
            self.state = GateState.AUTHORIZED
            return GateDecision(self.state, session or guest_session())

        if session is None or not session.is_authenticated:
            self.state = GateState.UNAUTHENTICATED
            logger.debug("Gate: %s requires sign-in", path)
            return GateDecision(self.state, guest_session(), redirect_to=self.login_redirect(path))

        if not role_satisfies(session.role, requirement):
            self.state = GateState.UNAUTHORIZED
            logger.debug("Gate: role %s denied for %s", session.role, path)
            if self.notifier is not None:
                self.notifier.error("Access denied", DENIED_NOTICE)
            return GateDecision(
                self.state,
                session,
                redirect_to=f"{self.denied_path}?{urlencode({'notice': DENIED_NOTICE})}",
                notice=DENIED_NOTICE,
            )

        self.state = GateState.AUTHORIZED
        return GateDecision(self.state, session)
