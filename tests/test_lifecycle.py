"""
Subscription state machine, billing dates and duplicate prevention.
"""

import datetime as dt

import pytest

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from submanager.errors import BadRequest, Conflict, Internal, NotFound
from submanager.lifecycle import SubscriptionLifecycle, compute_billing_dates
from submanager.models import Subscription
from submanager.stores import SqlSubscriptionStore

UTC = dt.timezone.utc


@pytest.fixture
def sub(lifecycle, alice, product):
    return lifecycle.create(alice.user.id, product.id, "monthly", price=9.99)


@pytest.mark.parametrize(
    "plan_type, start, expected",
    [
        ("monthly", dt.datetime(2024, 1, 15, tzinfo=UTC), dt.datetime(2024, 2, 15, tzinfo=UTC)),
        ("trial", dt.datetime(2024, 1, 15, tzinfo=UTC), dt.datetime(2024, 1, 29, tzinfo=UTC)),
        ("yearly", dt.datetime(2024, 1, 15, tzinfo=UTC), dt.datetime(2025, 1, 15, tzinfo=UTC)),
        ("monthly", dt.datetime(2024, 1, 31, tzinfo=UTC), dt.datetime(2024, 2, 29, tzinfo=UTC)),
        ("monthly", dt.datetime(2024, 12, 10, tzinfo=UTC), dt.datetime(2025, 1, 10, tzinfo=UTC)),
        ("yearly", dt.datetime(2024, 2, 29, tzinfo=UTC), dt.datetime(2025, 2, 28, tzinfo=UTC)),
    ],
)
def test_compute_billing_dates(plan_type, start, expected):
    end, next_billing = compute_billing_dates(plan_type, start)
    assert end == expected
    assert next_billing == expected


def test_compute_billing_dates_unknown_plan():
    with pytest.raises(BadRequest):
        compute_billing_dates("weekly", dt.datetime(2024, 1, 1, tzinfo=UTC))


def test_create_uses_clock_for_dates(db, products, alice, product):
    clock = lambda: dt.datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    lifecycle = SubscriptionLifecycle(SqlSubscriptionStore(db), products, clock=clock)
    out = lifecycle.create(alice.user.id, product.id, "trial", price=0)
    assert out.start_date.date() == dt.date(2024, 1, 15)
    assert out.end_date.date() == dt.date(2024, 1, 29)
    assert out.next_billing_date.date() == dt.date(2024, 1, 29)


def test_create_defaults(sub, alice, product):
    assert sub.status == "active"
    assert sub.auto_renew is True
    assert sub.price == 9.99
    assert sub.user.email == alice.user.email
    assert sub.product.name == product.name


def test_create_respects_auto_renew(lifecycle, alice, product):
    out = lifecycle.create(alice.user.id, product.id, "yearly", auto_renew=False, price=99)
    assert out.auto_renew is False


def test_duplicate_create_conflicts(lifecycle, sub, alice, product):
    with pytest.raises(Conflict):
        lifecycle.create(alice.user.id, product.id, "yearly", price=99)


def test_duplicate_create_conflicts_when_paused(lifecycle, sub, alice, product):
    lifecycle.pause(sub.id)
    with pytest.raises(Conflict):
        lifecycle.create(alice.user.id, product.id, "monthly", price=9.99)


def test_create_after_cancel_allowed(lifecycle, sub, alice, product):
    lifecycle.cancel(sub.id)
    again = lifecycle.create(alice.user.id, product.id, "monthly", price=9.99)
    assert again.id != sub.id
    assert again.status == "active"


def test_unique_index_backs_up_the_lookup(db, sub, alice, product):
    # a second writer that passed the lookup before the first insert committed
    store = SqlSubscriptionStore(db)
    now = dt.datetime.now(UTC)
    with pytest.raises(Conflict):
        store.create(
            user_id=alice.user.id,
            product_id=product.id,
            status="active",
            plan_type="monthly",
            start_date=now,
            end_date=now,
            next_billing_date=now,
            auto_renew=True,
            price=1.0,
        )


def test_create_unknown_product(lifecycle, alice):
    with pytest.raises(NotFound):
        lifecycle.create(alice.user.id, 999, "monthly", price=1)


@pytest.mark.parametrize("price", [-1, None])
def test_create_rejects_bad_price(lifecycle, alice, product, price):
    with pytest.raises(BadRequest):
        lifecycle.create(alice.user.id, product.id, "monthly", price=price)


def test_pause_and_resume(lifecycle, sub):
    assert lifecycle.pause(sub.id).status == "paused"
    with pytest.raises(BadRequest):
        lifecycle.pause(sub.id)
    assert lifecycle.resume(sub.id).status == "active"
    with pytest.raises(BadRequest):
        lifecycle.resume(sub.id)


def test_cancel_forces_auto_renew_off(lifecycle, sub):
    assert sub.auto_renew is True
    out = lifecycle.cancel(sub.id)
    assert out.status == "cancelled"
    assert out.auto_renew is False
    with pytest.raises(BadRequest):
        lifecycle.cancel(sub.id)


def test_cancel_from_paused(lifecycle, sub):
    lifecycle.pause(sub.id)
    assert lifecycle.cancel(sub.id).status == "cancelled"


def test_cancelled_cannot_resume_or_pause(lifecycle, sub):
    lifecycle.cancel(sub.id)
    with pytest.raises(BadRequest):
        lifecycle.resume(sub.id)
    with pytest.raises(BadRequest):
        lifecycle.pause(sub.id)


def test_expired_is_terminal(lifecycle, sub, db):
    db.get(Subscription, sub.id).status = "expired"
    db.commit()
    for op in (lifecycle.pause, lifecycle.resume, lifecycle.cancel):
        with pytest.raises(BadRequest):
            op(sub.id)


def test_dates_not_recomputed_on_transition(lifecycle, sub):
    paused = lifecycle.pause(sub.id)
    assert paused.end_date == sub.end_date
    assert paused.next_billing_date == sub.next_billing_date


def test_stale_status_transition_conflicts(db, sub):
    store = SqlSubscriptionStore(db)
    store.conditional_update_status(sub.id, "active", "paused")
    with pytest.raises(Conflict):
        store.conditional_update_status(sub.id, "active", "cancelled")
    assert store.find_by_id(sub.id).status == "paused"


@pytest.mark.parametrize("op", ["pause", "resume", "cancel", "find_by_id", "remove"])
def test_missing_subscription_not_found(lifecycle, op):
    with pytest.raises(NotFound):
        getattr(lifecycle, op)(12345)


def test_find_all_and_by_principal(lifecycle, sub, auth, products, alice):
    bob = auth.signup("Bob", "bob@example.com", "pw")
    other = products.create(name="Basic", price=5)
    lifecycle.create(bob.user.id, other.id, "trial", price=0)

    assert [s.id for s in lifecycle.find_by_principal(alice.user.id)] == [sub.id]
    everything = lifecycle.find_all()
    assert len(everything) == 2
    assert {s.user.name for s in everything} == {"Alice", "Bob"}
    assert {s.product.price for s in everything} == {29.99, 5}


def test_update_fields(lifecycle, sub):
    out = lifecycle.update(sub.id, {"price": 19.99, "auto_renew": False})
    assert out.price == 19.99
    assert out.auto_renew is False
    assert out.status == "active"
    assert out.end_date == sub.end_date


def test_update_plan_type_keeps_dates(lifecycle, sub):
    out = lifecycle.update(sub.id, {"plan_type": "yearly"})
    assert out.plan_type == "yearly"
    assert out.end_date == sub.end_date


def test_update_status_goes_through_transitions(lifecycle, sub):
    assert lifecycle.update(sub.id, {"status": "paused"}).status == "paused"
    assert lifecycle.update(sub.id, {"status": "paused"}).status == "paused"
    out = lifecycle.update(sub.id, {"status": "cancelled", "auto_renew": True})
    assert out.status == "cancelled"
    assert out.auto_renew is False
    with pytest.raises(BadRequest):
        lifecycle.update(sub.id, {"status": "active"})


@pytest.mark.parametrize("fields", [{"status": "expired"}, {"status": "bogus"}, {"price": -5}, {"user_id": 2}])
def test_update_rejects_invalid_fields(lifecycle, sub, fields):
    with pytest.raises(BadRequest):
        lifecycle.update(sub.id, fields)


def test_update_missing(lifecycle):
    with pytest.raises(NotFound):
        lifecycle.update(999, {"price": 1})


def test_remove(lifecycle, sub):
    lifecycle.remove(sub.id)
    with pytest.raises(NotFound):
        lifecycle.find_by_id(sub.id)


def test_update_status_and_fields_in_one_write(lifecycle, sub):
    def no_separate_write(*args, **kwargs):
        raise AssertionError("fields must travel with the status change")

    lifecycle.store.update = no_separate_write
    out = lifecycle.update(sub.id, {"status": "paused", "price": 1.0})
    assert out.status == "paused"
    assert out.price == 1.0


def test_failed_update_leaves_row_unchanged(lifecycle, sub, db, monkeypatch):
    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(Internal):
        lifecycle.update(sub.id, {"status": "paused", "price": 1.0})
    monkeypatch.undo()

    db.expire_all()
    row = db.get(Subscription, sub.id)
    assert row.status == "active"
    assert row.price == 9.99


def test_store_failure_on_pause_becomes_internal(lifecycle, sub):
    def broken(*args, **kwargs):
        raise SQLAlchemyError("connection reset by peer")

    lifecycle.store.find_by_id = broken
    with pytest.raises(Internal) as exc:
        lifecycle.pause(sub.id)
    assert exc.value.detail == "Internal server error"
    assert "peer" not in str(exc.value)


def test_store_failure_on_create_becomes_internal(lifecycle, alice, product):
    def broken(**fields):
        raise SQLAlchemyError("connection reset by peer")

    lifecycle.store.create = broken
    with pytest.raises(Internal) as exc:
        lifecycle.create(alice.user.id, product.id, "monthly", price=1)
    assert exc.value.detail == "Internal server error"


def test_typed_errors_pass_through_boundary(lifecycle, sub, alice, product):
    with pytest.raises(Conflict) as exc:
        lifecycle.create(alice.user.id, product.id, "monthly", price=1)
    assert exc.value.detail == "Subscription already exists for this user and product"
    with pytest.raises(NotFound) as exc:
        lifecycle.pause(4242)
    assert exc.value.detail == "Subscription with ID 4242 not found"


def test_dates_are_utc_aware(lifecycle, sub):
    out = lifecycle.find_by_id(sub.id)
    for value in (out.start_date, out.end_date, out.next_billing_date):
        assert value.utcoffset() == dt.timedelta(0)
