from __future__ import annotations

import hashlib
import hmac
import logging
import os
from uuid import uuid4

from sqlmodel import Session, col, select

from orgauth.domain.models import PasswordChangeRequest, Role, Status, User, UserRole
from orgauth.domain.principal import Principal
from orgauth.infra.auth import TokenManager, TokenPair, token_manager
from orgauth.infra.db import new_session
from orgauth.services.online_user_registry import OnlineUserRegistry

logger = logging.getLogger(__name__)


class AuthServiceError(Exception):
    pass


class NotFoundError(AuthServiceError):
    pass


class AuthError(AuthServiceError):
    pass


def hash_password(raw_password: str) -> str:
    salt = os.getenv("PASSWORD_SALT", "orgauth-dev-salt")
    return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()


class AuthService:
    def __init__(
        self,
        registry: OnlineUserRegistry | None = None,
        tokens: TokenManager | None = None,
    ) -> None:
        self._registry = registry
        self._tokens = tokens or token_manager

    def _session(self) -> Session:
        return new_session()

    def _role_codes(self, session: Session, user_id: int) -> frozenset[str]:
        statement = (
            select(Role.code)
            .join(UserRole, col(UserRole.role_id) == col(Role.id))
            .where(UserRole.user_id == user_id)
        )
        return frozenset(session.exec(statement).all())

    def _verify_password(self, user: User, raw_password: str) -> bool:
        return hmac.compare_digest(user.password_hash, hash_password(raw_password))

    def login(self, username: str, password: str) -> tuple[Principal, TokenPair]:
        with self._session() as session:
            user = session.exec(select(User).where(User.username == username)).first()
            if user is None or not self._verify_password(user, password):
                logger.warning("login failed for %s", username)
                raise AuthError("invalid credentials")
            if user.status != Status.ENABLED:
                raise AuthError("user disabled")
            assert user.id is not None
            principal = Principal(
                user_id=user.id,
                username=user.username,
                dept_id=user.dept_id,
                role_codes=self._role_codes(session, user.id),
            )

        tokens = self._tokens.issue(principal)
        if self._registry is not None:
            self._registry.connect(principal.username, uuid4().hex)
        logger.info("user %s logged in", principal.username)
        return principal, tokens

    def logout(self, principal: Principal, token: str) -> None:
        self._tokens.invalidate(token)
        if self._registry is not None:
            self._registry.disconnect(principal.username)

    def refresh(self, refresh_token: str) -> TokenPair:
        return self._tokens.refresh(refresh_token)

    def change_password(
        self,
        principal: Principal,
        user_id: int,
        payload: PasswordChangeRequest,
        token: str | None = None,
    ) -> None:
        """Set a new password; changing one's own also ends the current token."""
        own = principal.user_id == user_id
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if own and (payload.old_password is None or not self._verify_password(user, payload.old_password)):
                raise AuthError("old password incorrect")
            user.password_hash = hash_password(payload.new_password)
            session.add(user)
            session.commit()

        logger.info("password changed for user %s by %s", user_id, principal.username)
        if own and token:
            self.logout(principal, token)
