"""Tests for CouponService."""

import threading
from datetime import timedelta
from uuid import uuid4

import pytest
from psycopg2.errors import UniqueViolation
from pydantic import ValidationError

from core.audit import AuditAction
from core.events import CouponCreated
from core.exceptions import (
    CouponNotApplicable,
    CouponNotFound,
    CouponPerCustomerLimitExceeded,
)
from core.models import Coupon, CouponCreate, CouponUpdate, CouponType
from tests.conftest import NOW, TEST_MERCHANT_ID, coupon_row


@pytest.fixture
def coupon_service(postgres, audit, event_bus, clock):
    """CouponService over mocked Postgres with a pinned clock."""
    from core.services.coupon_service import CouponService

    return CouponService(postgres, audit, event_bus, clock=clock)


# =============================================================================
# MERCHANT MANAGEMENT
# =============================================================================


class TestCreate:
    """Tests for CouponService.create."""

    def test_creates_coupon_owned_by_acting_merchant(self, coupon_service, postgres, as_merchant):
        postgres.execute_single.return_value = None
        postgres.execute_returning.return_value = [coupon_row(code="WELCOME")]

        coupon = coupon_service.create(CouponCreate(
            code="welcome", type=CouponType.PERCENTAGE, value=1000, start_date=NOW,
        ))

        assert coupon.code == "WELCOME"
        params = postgres.execute_returning.call_args.args[1]
        assert params[1] == as_merchant
        assert params[2] == "WELCOME"
        assert params[9] == 0  # used_count

    def test_audits_and_publishes(self, coupon_service, postgres, audit, event_bus, as_merchant):
        postgres.execute_single.return_value = None
        postgres.execute_returning.return_value = [coupon_row()]

        coupon = coupon_service.create(CouponCreate(
            code="SAVE10", type=CouponType.PERCENTAGE, value=1000, start_date=NOW,
        ))

        audit.log_change.assert_called_once()
        assert audit.log_change.call_args.kwargs["action"] == AuditAction.CREATE
        assert audit.log_change.call_args.kwargs["entity_type"] == "coupon"

        event = event_bus.publish.call_args.args[0]
        assert isinstance(event, CouponCreated)
        assert event.coupon == coupon

    def test_duplicate_code_rejected(self, coupon_service, postgres, as_merchant):
        postgres.execute_single.return_value = coupon_row(code="SAVE10")

        with pytest.raises(ValueError, match="already exists"):
            coupon_service.create(CouponCreate(
                code="save10", type=CouponType.FIXED, value=500, start_date=NOW,
            ))

    def test_concurrent_duplicate_insert_reports_already_exists(self, coupon_service, postgres, as_merchant):
        """The loser of a create race gets the duplicate message, not a database error."""
        postgres.execute_single.return_value = None
        postgres.execute_returning.side_effect = UniqueViolation()

        with pytest.raises(ValueError, match="SAVE10 already exists"):
            coupon_service.create(CouponCreate(
                code="save10", type=CouponType.FIXED, value=500, start_date=NOW,
            ))

        postgres.execute_returning.assert_not_called()


class TestGetByCode:

    def test_lookup_is_case_insensitive(self, coupon_service, postgres):
        postgres.execute_single.return_value = coupon_row()

        coupon = coupon_service.get_by_code("  save10")

        assert isinstance(coupon, Coupon)
        assert postgres.execute_single.call_args.args[1] == ("SAVE10",)

    def test_missing_returns_none(self, coupon_service, postgres):
        postgres.execute_single.return_value = None
        assert coupon_service.get_by_code("NOPE") is None

    def test_reads_through_given_transaction(self, coupon_service, postgres, tx):
        tx.execute_single.return_value = coupon_row()

        coupon_service.get_by_code("SAVE10", db=tx)

        tx.execute_single.assert_called_once()
        postgres.execute_single.assert_not_called()


class TestUpdate:
    """Tests for CouponService.update."""

    def test_updates_and_audits_changes(self, coupon_service, postgres, audit, as_merchant):
        current = coupon_row(value=1000)
        postgres.execute_single.return_value = current
        postgres.execute_returning.return_value = [{**current, "value": 1500}]

        updated = coupon_service.update(current["id"], CouponUpdate(value=1500))

        assert updated.value == 1500
        changes = audit.log_change.call_args.kwargs["changes"]
        assert changes["value"] == {"old": 1000, "new": 1500}

    def test_other_merchants_coupon_is_not_found(self, coupon_service, postgres, as_merchant):
        postgres.execute_single.return_value = coupon_row(merchant_id=uuid4())

        with pytest.raises(ValueError, match="not found"):
            coupon_service.update(uuid4(), CouponUpdate(value=500))

    def test_merged_window_must_move_forward(self, coupon_service, postgres, as_merchant):
        """Pushing start past the stored end_date is rejected."""
        postgres.execute_single.return_value = coupon_row()

        with pytest.raises(ValueError, match="end_date"):
            coupon_service.update(uuid4(), CouponUpdate(start_date=NOW + timedelta(days=60)))

    def test_percentage_cap_applies_on_update(self, coupon_service, postgres, as_merchant):
        postgres.execute_single.return_value = coupon_row(type=CouponType.PERCENTAGE.value)

        with pytest.raises(ValueError, match="10000"):
            coupon_service.update(uuid4(), CouponUpdate(value=20000))

    @pytest.mark.parametrize("field", ["value", "start_date", "is_active"])
    def test_null_for_required_column_is_rejected(self, field):
        """Explicit null on a NOT NULL column never reaches the merge or the UPDATE."""
        with pytest.raises(ValidationError, match=f"{field} cannot be null"):
            CouponUpdate.model_validate({field: None})

    def test_null_clears_optional_columns(self, coupon_service, postgres, as_merchant):
        current = coupon_row(usage_limit=100)
        postgres.execute_single.return_value = current
        postgres.execute_returning.return_value = [{**current, "usage_limit": None, "end_date": None}]

        coupon = coupon_service.update(current["id"], CouponUpdate.model_validate(
            {"usage_limit": None, "end_date": None}
        ))

        assert coupon.usage_limit is None
        query, params = postgres.execute_returning.call_args.args
        assert "usage_limit = %s" in query
        assert "end_date = %s" in query
        assert params[:2] == (None, None)

    def test_empty_update_is_a_no_op(self, coupon_service, postgres, audit, as_merchant):
        postgres.execute_single.return_value = coupon_row()

        coupon = coupon_service.update(uuid4(), CouponUpdate())

        assert coupon.code == "SAVE10"
        postgres.execute_returning.assert_not_called()
        audit.log_change.assert_not_called()

    def test_deactivate_sets_flag(self, coupon_service, postgres, as_merchant):
        current = coupon_row()
        postgres.execute_single.return_value = current
        postgres.execute_returning.return_value = [{**current, "is_active": False}]

        coupon = coupon_service.deactivate(current["id"])

        assert coupon.is_active is False
        query = postgres.execute_returning.call_args.args[0]
        assert "is_active = %s" in query


class TestListForMerchant:

    def test_defaults_to_acting_merchant(self, coupon_service, postgres, as_merchant):
        postgres.execute.return_value = [coupon_row(), coupon_row(code="OTHER")]

        coupons = coupon_service.list_for_merchant(limit=10)

        assert [c.code for c in coupons] == ["SAVE10", "OTHER"]
        assert postgres.execute.call_args.args[1] == (TEST_MERCHANT_ID, 10)

    def test_active_only_filters(self, coupon_service, postgres, as_merchant):
        postgres.execute.return_value = []

        coupon_service.list_for_merchant(active_only=True)

        assert "is_active = true" in postgres.execute.call_args.args[0]


# =============================================================================
# VALIDATION
# =============================================================================


class TestValidate:
    """Tests for CouponService.validate."""

    def test_unknown_code(self, coupon_service, postgres, test_user_id):
        postgres.execute_single.return_value = None

        with pytest.raises(CouponNotFound) as exc:
            coupon_service.validate("ghost", test_user_id, 10000)

        assert exc.value.coupon_code == "GHOST"

    def test_returns_coupon_and_discount(self, coupon_service, postgres, test_user_id):
        postgres.execute_single.return_value = coupon_row(value=1000)

        coupon, discount = coupon_service.validate("SAVE10", test_user_id, 10000)

        assert coupon.code == "SAVE10"
        assert discount == 1000

    def test_skips_redemption_count_without_per_customer_limit(self, coupon_service, postgres, test_user_id):
        postgres.execute_single.return_value = coupon_row(per_customer_limit=None)

        coupon_service.validate("SAVE10", test_user_id, 10000)

        assert postgres.execute_single.call_count == 1

    def test_per_customer_limit_reached(self, coupon_service, postgres, test_user_id):
        postgres.execute_single.side_effect = [
            coupon_row(per_customer_limit=1),
            {"redemptions": 1},
        ]

        with pytest.raises(CouponPerCustomerLimitExceeded):
            coupon_service.validate("SAVE10", test_user_id, 10000)

    def test_uses_injected_clock(self, postgres, audit, test_user_id):
        """A coupon that starts tomorrow is rejected under a pinned clock."""
        from core.services.coupon_service import CouponService
        from utils.timezone import fixed_clock

        postgres.execute_single.return_value = coupon_row(start_date=NOW + timedelta(days=1))
        service = CouponService(postgres, audit, clock=fixed_clock(NOW))

        with pytest.raises(CouponNotApplicable, match="not valid yet"):
            service.validate("SAVE10", test_user_id, 10000)

    def test_validates_through_transaction(self, coupon_service, postgres, tx, test_user_id):
        tx.execute_single.return_value = coupon_row()

        coupon_service.validate("SAVE10", test_user_id, 10000, db=tx)

        postgres.execute_single.assert_not_called()


# =============================================================================
# REDEMPTION
# =============================================================================


class TestRedeem:
    """Tests for CouponService.redeem."""

    def test_increments_and_records_usage(self, coupon_service, tx, make_coupon, test_user_id):
        coupon = make_coupon()
        order_id = uuid4()
        tx.execute_rowcount.return_value = 1
        tx.execute_returning.return_value = [{
            "id": uuid4(), "coupon_id": coupon.id, "order_id": order_id,
            "customer_id": test_user_id, "discount_cents": 1000, "created_at": NOW,
        }]

        usage = coupon_service.redeem(tx, coupon, order_id, test_user_id, 1000)

        assert usage.discount_cents == 1000
        query, params = tx.execute_rowcount.call_args.args
        assert "used_count = used_count + 1" in query
        assert "used_count < usage_limit" in query
        assert params == (NOW, coupon.id, NOW, NOW)

    def test_lost_race_raises_not_applicable(self, coupon_service, tx, make_coupon, test_user_id):
        tx.execute_rowcount.return_value = 0

        with pytest.raises(CouponNotApplicable, match="no longer available"):
            coupon_service.redeem(tx, make_coupon(), uuid4(), test_user_id, 1000)

        tx.execute_returning.assert_not_called()

    def test_concurrent_redemptions_never_exceed_remaining_uses(
        self, coupon_service, make_coupon, test_user_id
    ):
        """N checkouts race for K remaining uses: exactly K win."""
        from unittest.mock import MagicMock
        from clients.postgres_client import Transaction

        remaining = 3
        racers = 10
        lock = threading.Lock()
        used = {"count": 0}

        def conditional_increment(query, params):
            with lock:
                if used["count"] < remaining:
                    used["count"] += 1
                    return 1
                return 0

        coupon = make_coupon(usage_limit=remaining, used_count=0)
        results = []
        barrier = threading.Barrier(racers)

        def checkout():
            tx = MagicMock(spec=Transaction)
            tx.execute_rowcount.side_effect = conditional_increment
            tx.execute_returning.return_value = [{
                "id": uuid4(), "coupon_id": coupon.id, "order_id": uuid4(),
                "customer_id": test_user_id, "discount_cents": 1000, "created_at": NOW,
            }]
            barrier.wait()
            try:
                coupon_service.redeem(tx, coupon, uuid4(), test_user_id, 1000)
                outcome = "won"
            except CouponNotApplicable:
                outcome = "lost"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=checkout) for _ in range(racers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("won") == remaining
        assert results.count("lost") == racers - remaining
        assert used["count"] == remaining
