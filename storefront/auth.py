# storefront/auth.py
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .carts import CartStore
from .core import AuthOut, LoginIn, RegisterIn, UserOut, _make_user
from .database import Database
from .errors import Conflict, EventPublishError, InvalidCredentials, InvalidRefreshToken
from .events import USER_LOGGED_IN, Publisher
from .models import User
from .security import CredentialIssuer, PasswordHasher, TokenError
from .tokens import RefreshTokenStore
from .users import UserStore

logger = structlog.get_logger(__name__)


class AuthCoordinator:
    """Register, login, refresh and logout.

    Token lifecycle: issued (register/login) -> rotated (refresh) any number
    of times -> revoked (logout). Rotation deletes the presented record and
    stores the new one in the same transaction, so a token can be rotated
    at most once.
    """

    def __init__(
        self,
        db: Database,
        issuer: CredentialIssuer,
        hasher: PasswordHasher,
        publisher: Publisher,
        users: Optional[UserStore] = None,
        tokens: Optional[RefreshTokenStore] = None,
        carts: Optional[CartStore] = None,
        publish_failure_policy: str = "raise",
    ):
        self.db = db
        self.issuer = issuer
        self.hasher = hasher
        self.publisher = publisher
        self.users = users or UserStore()
        self.tokens = tokens or RefreshTokenStore()
        self.carts = carts or CartStore()
        self.publish_failure_policy = publish_failure_policy
        self._dummy_hash: Optional[str] = None

    def register(self, req: RegisterIn) -> AuthOut:
        password_hash = self.hasher.hash(req.password)
        try:
            with self.db.transaction() as session:
                if self.users.get_by_email(session, req.email) is not None:
                    raise Conflict("you can't register with this email")
                user = self.users.create(
                    session,
                    email=req.email,
                    password_hash=password_hash,
                    first_name=req.first_name,
                    last_name=req.last_name,
                    phone=req.phone,
                )
                # user and cart commit together or not at all
                self.carts.create(session, user.id)
                result = self._issue(session, user)
        except IntegrityError as exc:
            # lost a race with a concurrent registration of the same email
            raise Conflict("you can't register with this email") from exc

        logger.info("User registered", user_id=result.user.id)
        self._announce(result.user)
        return result

    def login(self, req: LoginIn) -> AuthOut:
        with self.db.transaction() as session:
            user = self.users.get_active_by_email(session, req.email)
            user_id = user.id if user is not None else None
            password_hash = user.password_hash if user is not None else self._fallback_hash()

        # unknown emails are checked against a dummy hash too
        password_ok = self.hasher.verify(req.password, password_hash)
        if user_id is None or not password_ok:
            logger.warning("Login refused")
            raise InvalidCredentials()

        with self.db.transaction() as session:
            user = self.users.get_by_id(session, user_id)
            if user is None or not user.is_active:
                raise InvalidCredentials()
            result = self._issue(session, user)

        logger.info("User logged in", user_id=user_id)
        self._announce(result.user)
        return result

    def refresh(self, refresh_token: str) -> AuthOut:
        """Rotate a refresh token. Every failure is the same InvalidRefreshToken."""
        try:
            user_id = self.issuer.verify_refresh(refresh_token)
        except TokenError:
            logger.warning("Refresh refused, bad signature or expired")
            raise InvalidRefreshToken()

        with self.db.transaction() as session:
            record = self.tokens.get_valid(session, refresh_token)
            if record is None or record.user_id != user_id:
                logger.warning("Refresh refused, token not on record", user_id=user_id)
                raise InvalidRefreshToken()

            user = self.users.get_by_id(session, user_id)
            if user is None or not user.is_active:
                raise InvalidRefreshToken()

            pair = self.issuer.issue(user.id, user.email, user.role.value)
            # retire the old record only once the new pair exists
            if self.tokens.delete_by_id(session, record.id) != 1:
                raise InvalidRefreshToken()
            self.tokens.create(session, user.id, pair.refresh_token, pair.refresh_expires_at)
            result = AuthOut(user=_make_user(user), access_token=pair.access_token, refresh_token=pair.refresh_token)

        logger.info("Refresh token rotated", user_id=user_id)
        self._announce(result.user)
        return result

    def logout(self, refresh_token: str) -> None:
        with self.db.transaction() as session:
            removed = self.tokens.delete_by_token(session, refresh_token)
        logger.info("Logout", revoked=removed)

    def _issue(self, session: Session, user: User) -> AuthOut:
        pair = self.issuer.issue(user.id, user.email, user.role.value)
        self.tokens.create(session, user.id, pair.refresh_token, pair.refresh_expires_at)
        return AuthOut(user=_make_user(user), access_token=pair.access_token, refresh_token=pair.refresh_token)

    def _announce(self, user: UserOut) -> None:
        try:
            self.publisher.publish(USER_LOGGED_IN, user.model_dump(mode="json"), {"user_id": str(user.id)})
        except EventPublishError:
            if self.publish_failure_policy == "raise":
                logger.error("Login event publish failed", user_id=user.id)
                raise
            logger.exception("Login event publish failed, credentials returned anyway", user_id=user.id)

    def _fallback_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash("not-a-real-password")
        return self._dummy_hash
