from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .catalog import ProductCatalog
from .config import Settings, get_settings
from .db import get_db
from .errors import Unauthorized
from .lifecycle import SubscriptionLifecycle
from .models import User
from .security import PasswordHasher, TokenIssuer
from .sessions import AuthSessionManager
from .stores import SqlCredentialStore, SqlProductStore, SqlSubscriptionStore

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

_hasher = PasswordHasher()


def get_token_issuer(settings: Settings = Depends(get_settings)) -> TokenIssuer:
    return TokenIssuer(
        settings.jwt_secret,
        access_ttl_minutes=settings.access_token_ttl_minutes,
        refresh_ttl_days=settings.refresh_token_ttl_days,
    )


def get_auth_manager(
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> AuthSessionManager:
    return AuthSessionManager(SqlCredentialStore(db), _hasher, issuer)


def get_lifecycle(db: Session = Depends(get_db)) -> SubscriptionLifecycle:
    return SubscriptionLifecycle(SqlSubscriptionStore(db), SqlProductStore(db))


def get_catalog(db: Session = Depends(get_db)) -> ProductCatalog:
    return ProductCatalog(SqlProductStore(db))


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    auth: AuthSessionManager = Depends(get_auth_manager),
) -> User:
    """Resolve the bearer token to a principal, or fail with 401.

    Every failure (missing header, bad or expired token, deleted user) gives
    the same response so callers cannot tell which check failed.
    """
    if not token:
        raise Unauthorized()
    return auth.authenticate(token)
