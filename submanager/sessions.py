from __future__ import annotations

import structlog

from .errors import Unauthorized, service_boundary
from .models import User
from .schemas import AuthOut, PrincipalOut, TokensOut
from .security import ACCESS, REFRESH, PasswordHasher, TokenIssuer
from .stores import CredentialStore, normalize_email

logger = structlog.get_logger(__name__)


class AuthSessionManager:
    """Login, signup, refresh-token rotation and logout.

    Only a SHA-256 fingerprint of the current refresh token is stored per
    principal; issuing a new pair overwrites it, which revokes every refresh
    token issued before.
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher, issuer: TokenIssuer):
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.db = getattr(store, "db", None)

    def _issue(self, user: User, rotate_from: str | None = None) -> TokensOut:
        pair = self.issuer.issue_pair({"sub": user.id, "email": user.email, "name": user.name})
        new_hash = self.issuer.fingerprint(pair.refresh_token)
        if rotate_from is None:
            self.store.update_refresh_hash(user.id, new_hash)
        elif not self.store.update_refresh_hash(user.id, new_hash, expected=rotate_from):
            # another refresh with the same token rotated first
            raise Unauthorized("Invalid refresh token")
        return TokensOut(access_token=pair.access_token, refresh_token=pair.refresh_token)

    def _auth_result(self, user: User) -> AuthOut:
        tokens = self._issue(user)
        return AuthOut(**tokens.model_dump(), user=PrincipalOut.model_validate(user))

    @service_boundary("signup")
    def signup(self, name: str, email: str, password: str) -> AuthOut:
        user = self.store.create(
            name=name,
            email=normalize_email(email),
            password_hash=self.hasher.hash(password),
        )
        logger.info("signup", principal_id=user.id)
        return self._auth_result(user)

    @service_boundary("login")
    def login(self, email: str, password: str) -> AuthOut:
        user = self.store.find_by_email(email)
        if user is None or not self.hasher.verify(password, user.password_hash):
            logger.info("login_failed", email=normalize_email(email))
            raise Unauthorized("Invalid email or password")
        logger.info("login", principal_id=user.id)
        return self._auth_result(user)

    @service_boundary("refresh")
    def refresh(self, refresh_token: str) -> TokensOut:
        try:
            claims = self.issuer.verify(refresh_token, REFRESH)
            user = self.store.find_by_id(int(claims["sub"]))
        except (Unauthorized, ValueError):
            raise Unauthorized("Invalid refresh token")
        if user is None or not self.issuer.matches(refresh_token, user.refresh_token_hash):
            raise Unauthorized("Invalid refresh token")
        tokens = self._issue(user, rotate_from=user.refresh_token_hash)
        logger.info("refresh", principal_id=user.id)
        return tokens

    @service_boundary("logout")
    def logout(self, principal_id: int) -> None:
        self.store.update_refresh_hash(principal_id, None)
        logger.info("logout", principal_id=principal_id)

    @service_boundary("authenticate")
    def authenticate(self, bearer_token: str) -> User:
        claims = self.issuer.verify(bearer_token, ACCESS)
        try:
            principal_id = int(claims["sub"])
        except ValueError:
            raise Unauthorized()
        user = self.store.find_by_id(principal_id)
        if user is None:
            raise Unauthorized()
        return user

    @service_boundary("change_password")
    def change_password(self, principal_id: int, current_password: str, new_password: str) -> None:
        user = self.store.find_by_id(principal_id)
        if user is None or not self.hasher.verify(current_password, user.password_hash):
            raise Unauthorized("Invalid email or password")
        self.store.update_password_hash(principal_id, self.hasher.hash(new_password))
        # existing sessions must log in again
        self.store.update_refresh_hash(principal_id, None)
        logger.info("password_changed", principal_id=principal_id)
