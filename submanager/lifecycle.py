"""Subscription lifecycle: creation, billing dates and status transitions.

    active --pause--> paused --resume--> active
    active|paused --cancel--> cancelled   (auto_renew forced off)

``expired`` is a valid stored status but nothing here produces it.
"""

from __future__ import annotations

import calendar
import datetime as dt
from typing import Any, Dict, List, Optional

import structlog

from .errors import BadRequest, Conflict, NotFound, service_boundary
from .models import LIVE_STATUSES, PLAN_TYPES, SUBSCRIPTION_STATUSES, Subscription, utcnow
from .schemas import SubscriptionOut
from .stores import ProductStore, SubscriptionStore

logger = structlog.get_logger(__name__)

TRIAL_DAYS = 14

# target status -> statuses it may be entered from
TRANSITIONS: Dict[str, tuple] = {
    "paused": ("active",),
    "active": ("paused",),
    "cancelled": ("active", "paused"),
}

_GUARD_MESSAGES = {
    "paused": "Only active subscriptions can be paused",
    "active": "Only paused subscriptions can be resumed",
    "cancelled": "Subscription is already cancelled",
}

UPDATABLE_FIELDS = ("plan_type", "auto_renew", "price", "status")


def _add_months(start: dt.datetime, months: int) -> dt.datetime:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_billing_dates(plan_type: str, start: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    """Return ``(end_date, next_billing_date)`` for a period starting at ``start``.

    Month and year steps keep the day of month, clamped to the last day of
    the target month (Jan 31 -> Feb 29 in 2024; Feb 29 -> Feb 28 next year).
    """
    if plan_type == "monthly":
        end = _add_months(start, 1)
    elif plan_type == "yearly":
        end = _add_months(start, 12)
    elif plan_type == "trial":
        end = start + dt.timedelta(days=TRIAL_DAYS)
    else:
        raise BadRequest(f"Unknown plan type: {plan_type}")
    return end, end


class SubscriptionLifecycle:
    def __init__(self, store: SubscriptionStore, products: ProductStore, clock=utcnow):
        self.store = store
        self.products = products
        self.clock = clock
        self.db = getattr(store, "db", None)

    def _get(self, subscription_id: int) -> Subscription:
        sub = self.store.find_by_id(subscription_id)
        if sub is None:
            raise NotFound(f"Subscription with ID {subscription_id} not found")
        return sub

    def _transition(self, subscription_id: int, target: str, **extra: Any) -> SubscriptionOut:
        sub = self._get(subscription_id)
        current = sub.status
        if current == "expired":
            raise BadRequest("Subscription has expired")
        if current not in TRANSITIONS[target]:
            raise BadRequest(_GUARD_MESSAGES[target])
        updated = self.store.conditional_update_status(subscription_id, current, target, **extra)
        logger.info("subscription_transition", subscription_id=subscription_id, from_status=current, to_status=target)
        return SubscriptionOut.model_validate(updated)

    @service_boundary("subscription_create")
    def create(
        self,
        principal_id: int,
        product_id: int,
        plan_type: str,
        auto_renew: Optional[bool] = None,
        price: float = 0.0,
    ) -> SubscriptionOut:
        if plan_type not in PLAN_TYPES:
            raise BadRequest(f"Unknown plan type: {plan_type}")
        if price is None or price < 0:
            raise BadRequest("Price must be non-negative")
        if self.products.find_by_id(product_id) is None:
            raise NotFound(f"Product with ID {product_id} not found")

        excluded = [s for s in SUBSCRIPTION_STATUSES if s not in LIVE_STATUSES]
        if self.store.find_by_principal_and_product(principal_id, product_id, excluded) is not None:
            raise Conflict("Subscription already exists for this user and product")

        start = self.clock()
        end, next_billing = compute_billing_dates(plan_type, start)
        sub = self.store.create(
            user_id=principal_id,
            product_id=product_id,
            status="active",
            plan_type=plan_type,
            start_date=start,
            end_date=end,
            next_billing_date=next_billing,
            auto_renew=True if auto_renew is None else auto_renew,
            price=price,
        )
        logger.info("subscription_created", subscription_id=sub.id, principal_id=principal_id, product_id=product_id)
        return SubscriptionOut.model_validate(sub)

    @service_boundary("subscription_find_all")
    def find_all(self) -> List[SubscriptionOut]:
        return [SubscriptionOut.model_validate(s) for s in self.store.find_all()]

    @service_boundary("subscription_find_by_principal")
    def find_by_principal(self, principal_id: int) -> List[SubscriptionOut]:
        return [SubscriptionOut.model_validate(s) for s in self.store.find_by_principal(principal_id)]

    @service_boundary("subscription_find_by_id")
    def find_by_id(self, subscription_id: int) -> SubscriptionOut:
        return SubscriptionOut.model_validate(self._get(subscription_id))

    @service_boundary("subscription_pause")
    def pause(self, subscription_id: int) -> SubscriptionOut:
        return self._transition(subscription_id, "paused")

    @service_boundary("subscription_resume")
    def resume(self, subscription_id: int) -> SubscriptionOut:
        return self._transition(subscription_id, "active")

    @service_boundary("subscription_cancel")
    def cancel(self, subscription_id: int) -> SubscriptionOut:
        return self._transition(subscription_id, "cancelled", auto_renew=False)

    @service_boundary("subscription_update")
    def update(self, subscription_id: int, fields: Dict[str, Any]) -> SubscriptionOut:
        """Merge ``fields`` onto the subscription.

        Dates are left alone. A ``status`` different from the current one is
        applied as the matching pause/resume/cancel transition; anything the
        transition table does not allow (including ``expired``) is rejected.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise BadRequest(f"Unknown fields: {', '.join(sorted(unknown))}")
        changes = dict(fields)
        blank = sorted(k for k, v in changes.items() if v is None)
        if blank:
            raise BadRequest(f"Fields must not be null: {', '.join(blank)}")
        if "plan_type" in changes and changes["plan_type"] not in PLAN_TYPES:
            raise BadRequest(f"Unknown plan type: {changes['plan_type']}")
        if "price" in changes and changes["price"] < 0:
            raise BadRequest("Price must be non-negative")

        status = changes.pop("status", None)
        sub = self._get(subscription_id)
        if status is not None and status != sub.status:
            if status not in SUBSCRIPTION_STATUSES:
                raise BadRequest(f"Unknown status: {status}")
            if status not in TRANSITIONS:
                raise BadRequest(f"Status cannot be set to {status}")
            if status == "cancelled":
                # cancelling always turns renewal off, whatever else was sent
                changes["auto_renew"] = False
            # status and merged fields go out as a single UPDATE
            return self._transition(subscription_id, status, **changes)

        if changes:
            sub = self.store.update(subscription_id, **changes)
            if sub is None:
                raise NotFound(f"Subscription with ID {subscription_id} not found")
        else:
            sub = self._get(subscription_id)
        return SubscriptionOut.model_validate(sub)

    @service_boundary("subscription_remove")
    def remove(self, subscription_id: int) -> None:
        if not self.store.delete(subscription_id):
            raise NotFound(f"Subscription with ID {subscription_id} not found")
        logger.info("subscription_removed", subscription_id=subscription_id)
