"""Store interfaces used by the cores, and their SQLAlchemy implementations.

Uniqueness (user email, one live subscription per user/product) is enforced
by database constraints; an ``IntegrityError`` on insert becomes ``Conflict``.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict
from .models import Product, Subscription, User, utcnow

_UNSET: Any = object()


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Optional[User]: ...

    def find_by_id(self, principal_id: int) -> Optional[User]: ...

    def create(self, *, name: str, email: str, password_hash: str) -> User: ...

    def update_refresh_hash(self, principal_id: int, refresh_hash: Optional[str], *, expected: Any = _UNSET) -> bool: ...

    def update_password_hash(self, principal_id: int, password_hash: str) -> bool: ...


class ProductStore(Protocol):
    def find_by_id(self, product_id: int) -> Optional[Product]: ...

    def find_all(self) -> List[Product]: ...

    def create(self, *, name: str, price: float) -> Product: ...


class SubscriptionStore(Protocol):
    def find_by_principal_and_product(
        self, principal_id: int, product_id: int, exclude_statuses: Iterable[str]
    ) -> Optional[Subscription]: ...

    def create(self, **fields: Any) -> Subscription: ...

    def find_by_id(self, subscription_id: int) -> Optional[Subscription]: ...

    def conditional_update_status(
        self, subscription_id: int, expected: str, new: str, **extra: Any
    ) -> Subscription: ...

    def update(self, subscription_id: int, **fields: Any) -> Optional[Subscription]: ...

    def delete(self, subscription_id: int) -> bool: ...

    def find_all(self) -> List[Subscription]: ...

    def find_by_principal(self, principal_id: int) -> List[Subscription]: ...


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class SqlCredentialStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        e = normalize_email(email)
        if not e:
            return None
        return self.db.execute(select(User).where(User.email == e)).scalar_one_or_none()

    def find_by_id(self, principal_id: int) -> Optional[User]:
        return self.db.get(User, principal_id, populate_existing=True)

    def create(self, *, name: str, email: str, password_hash: str) -> User:
        user = User(name=name.strip(), email=normalize_email(email), password_hash=password_hash)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Email already exists")
        self.db.refresh(user)
        return user

    def update_refresh_hash(self, principal_id: int, refresh_hash: Optional[str], *, expected: Any = _UNSET) -> bool:
        """Set (or clear) the stored refresh-token hash.

        When ``expected`` is given the write only happens if the stored hash
        still equals it, so two racing rotations cannot both succeed.
        Returns whether a row was written.
        """
        stmt = update(User).where(User.id == principal_id)
        if expected is not _UNSET:
            stmt = stmt.where(User.refresh_token_hash == expected)
        result = self.db.execute(stmt.values(refresh_token_hash=refresh_hash))
        self.db.commit()
        return result.rowcount == 1

    def update_password_hash(self, principal_id: int, password_hash: str) -> bool:
        result = self.db.execute(
            update(User).where(User.id == principal_id).values(password_hash=password_hash)
        )
        self.db.commit()
        return result.rowcount == 1


class SqlProductStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, product_id: int) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def find_all(self) -> List[Product]:
        return list(self.db.execute(select(Product).order_by(Product.id)).scalars())

    def create(self, *, name: str, price: float) -> Product:
        product = Product(name=name, price=price)
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        return product


class SqlSubscriptionStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_principal_and_product(
        self, principal_id: int, product_id: int, exclude_statuses: Iterable[str]
    ) -> Optional[Subscription]:
        stmt = select(Subscription).where(
            Subscription.user_id == principal_id,
            Subscription.product_id == product_id,
        )
        excluded = list(exclude_statuses)
        if excluded:
            stmt = stmt.where(Subscription.status.not_in(excluded))
        return self.db.execute(stmt.limit(1)).unique().scalar_one_or_none()

    def create(self, **fields: Any) -> Subscription:
        sub = Subscription(**fields)
        self.db.add(sub)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Subscription already exists for this user and product")
        self.db.refresh(sub)
        return sub

    def find_by_id(self, subscription_id: int) -> Optional[Subscription]:
        return self.db.get(Subscription, subscription_id, populate_existing=True)

    def conditional_update_status(
        self, subscription_id: int, expected: str, new: str, **extra: Any
    ) -> Subscription:
        stmt = (
            update(Subscription)
            .where(Subscription.id == subscription_id, Subscription.status == expected)
            .values(status=new, updated_at=utcnow(), **extra)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Subscription already exists for this user and product")
        if result.rowcount != 1:
            self.db.rollback()
            raise Conflict("Subscription status changed concurrently")
        self.db.commit()
        return self.find_by_id(subscription_id)

    def update(self, subscription_id: int, **fields: Any) -> Optional[Subscription]:
        sub = self.find_by_id(subscription_id)
        if sub is None:
            return None
        for key, value in fields.items():
            setattr(sub, key, value)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Subscription already exists for this user and product")
        self.db.refresh(sub)
        return sub

    def delete(self, subscription_id: int) -> bool:
        sub = self.db.get(Subscription, subscription_id)
        if sub is None:
            return False
        self.db.delete(sub)
        self.db.commit()
        return True

    def find_all(self) -> List[Subscription]:
        return list(self.db.execute(select(Subscription).order_by(Subscription.id)).unique().scalars())

    def find_by_principal(self, principal_id: int) -> List[Subscription]:
        stmt = select(Subscription).where(Subscription.user_id == principal_id).order_by(Subscription.id)
        return list(self.db.execute(stmt).unique().scalars())
