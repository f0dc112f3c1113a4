from decimal import Decimal

import pytest

from storefront.exceptions import (
    InsufficientStockError,
    InvalidOrderStateError,
    OrderNotFoundError,
    ValidationFailedError,
)
from storefront.models.order import OrderStatus
from storefront.models.payment import PaymentMethod
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import OrderService, PaymentDetails
from tests.factories import make_order, make_product, payment_count, status_of, stock_of


def approved(external_id: str, amount: str = "25.46", method=PaymentMethod.CARD) -> PaymentDetails:
    return PaymentDetails(
        external_id=external_id,
        external_status="approved",
        amount=Decimal(amount),
        method=method,
    )


def declined(external_id: str) -> PaymentDetails:
    return PaymentDetails(
        external_id=external_id,
        external_status="rejected",
        status_detail="cc_rejected_other_reason",
        amount=Decimal("25.46"),
        method=PaymentMethod.CARD,
    )


class TestCreatePendingOrder:
    async def test_snapshots_prices_from_catalog(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, price="12.73", stock=5)

        order = await OrderService(db).create_pending_order(user_id, [{"product_id": product_id, "quantity": 2}])

        assert order.status == OrderStatus.PENDING.value
        assert order.total_amount == Decimal("25.46")
        assert order.items[0].unit_price == Decimal("12.73")
        assert order.items[0].name_snapshot == "Camiseta"
        # Проверка остатков ничего не резервирует
        assert await stock_of(session_factory, product_id) == 5

    async def test_merges_duplicate_lines(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)

        order = await OrderService(db).create_pending_order(user_id, [
            {"product_id": product_id, "quantity": 1},
            {"product_id": product_id, "quantity": 2},
        ])

        assert len(order.items) == 1
        assert order.items[0].quantity == 3

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, None])
    async def test_rejects_bad_quantity(self, db, session_factory, user_id, quantity):
        product_id = await make_product(session_factory)

        with pytest.raises(ValidationFailedError):
            await OrderService(db).create_pending_order(user_id, [{"product_id": product_id, "quantity": quantity}])

    async def test_rejects_empty_items(self, db, user_id):
        with pytest.raises(ValidationFailedError):
            await OrderService(db).create_pending_order(user_id, [])

    async def test_rejects_unknown_product(self, db, user_id):
        with pytest.raises(ValidationFailedError) as exc_info:
            await OrderService(db).create_pending_order(user_id, [{"product_id": 9999, "quantity": 1}])
        assert exc_info.value.details["product_ids"] == [9999]

    async def test_insufficient_stock(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            await OrderService(db).create_pending_order(user_id, [{"product_id": product_id, "quantity": 2}])

        assert exc_info.value.error_code == "INSUFFICIENT_STOCK"
        assert exc_info.value.details["issues"][0]["available"] == 1


class TestTryMarkPaid:
    async def test_applies_once_for_duplicate_calls(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id, quantity=2)
        service = OrderService(db)

        first = await service.try_mark_paid(order_id, approved("mp-1"))
        second = await service.try_mark_paid(order_id, approved("mp-1"))

        assert first.applied
        assert not second.applied
        assert second.order.status == OrderStatus.PAID.value
        assert await stock_of(session_factory, product_id) == 3
        assert await payment_count(session_factory, order_id) == 1

    async def test_second_payment_id_is_noop_after_paid(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id, quantity=2)
        service = OrderService(db)

        await service.try_mark_paid(order_id, approved("mp-card"))
        result = await service.try_mark_paid(order_id, approved("mp-webhook"))

        assert not result.applied
        assert await stock_of(session_factory, product_id) == 3
        assert await payment_count(session_factory, order_id) == 1

    async def test_paid_from_failed(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id, status="FAILED")

        result = await OrderService(db).try_mark_paid(order_id, approved("mp-retry"))

        assert result.applied
        assert await status_of(session_factory, order_id) == "PAID"

    @pytest.mark.parametrize("status", ["CANCELLED", "REFUNDED", "DISPUTED"])
    async def test_not_payable_statuses(self, db, session_factory, user_id, status):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id, status=status)

        result = await OrderService(db).try_mark_paid(order_id, approved("mp-late"))

        assert not result.applied
        assert await status_of(session_factory, order_id) == status
        assert await stock_of(session_factory, product_id) == 5
        assert await payment_count(session_factory, order_id) == 0

    async def test_records_payment_details(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)

        result = await OrderService(db).try_mark_paid(order_id, approved("mp-7", method=PaymentMethod.VOUCHER))

        assert result.payment.external_id == "mp-7"
        assert result.payment.method == "voucher"
        assert result.order.paid_at is not None
        assert result.stock_changes[0].quantity == 2

    async def test_inventory_failure_rolls_back_whole_transition(self, db, session_factory, user_id, monkeypatch):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id, quantity=2)
        real_decrement = InventoryService.decrement_for_order

        async def decrement_then_fail(self, order_id):
            await real_decrement(self, order_id)
            raise RuntimeError("склад недоступен")

        monkeypatch.setattr(InventoryService, "decrement_for_order", decrement_then_fail)

        with pytest.raises(RuntimeError):
            await OrderService(db).try_mark_paid(order_id, approved("mp-1"))

        assert await status_of(session_factory, order_id) == "PENDING"
        assert await stock_of(session_factory, product_id) == 5
        assert await payment_count(session_factory, order_id) == 0


class TestDeclinedAttempt:
    async def test_keeps_order_pending(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        recorded = await service.record_declined_attempt(order_id, declined("mp-rej"))

        assert recorded
        assert await service.is_declined_attempt("mp-rej")
        assert not await service.is_declined_attempt("mp-other")
        assert await status_of(session_factory, order_id) == "PENDING"
        assert await stock_of(session_factory, product_id) == 5

    async def test_reopens_order_failed_by_early_webhook(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id, status="FAILED")

        await OrderService(db).record_declined_attempt(order_id, declined("mp-rej"))

        assert await status_of(session_factory, order_id) == "PENDING"

    async def test_recorded_once(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        assert await service.record_declined_attempt(order_id, declined("mp-rej"))
        assert not await service.record_declined_attempt(order_id, declined("mp-rej"))
        assert await payment_count(session_factory, order_id) == 1

    async def test_approved_payment_is_not_a_decline(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        await service.try_mark_paid(order_id, approved("mp-ok"))

        assert not await service.is_declined_attempt("mp-ok")


class TestCancel:
    async def test_cancel_pending(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)

        order = await OrderService(db).cancel_for_user(order_id, user_id)

        assert order.status == OrderStatus.CANCELLED.value

    async def test_paid_wins_over_late_cancel(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        await service.try_mark_paid(order_id, approved("mp-1"))
        with pytest.raises(InvalidOrderStateError):
            await service.cancel_for_user(order_id, user_id)

        assert await status_of(session_factory, order_id) == "PAID"

    async def test_payment_after_cancel_is_noop(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        await service.cancel_for_user(order_id, user_id)
        result = await service.try_mark_paid(order_id, approved("mp-1"))

        assert not result.applied
        assert await status_of(session_factory, order_id) == "CANCELLED"
        assert await payment_count(session_factory, order_id) == 0
        assert await stock_of(session_factory, product_id) == 5

    async def test_foreign_order_not_found(self, db, session_factory, user_id, other_user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, other_user_id, product_id)

        with pytest.raises(OrderNotFoundError):
            await OrderService(db).cancel_for_user(order_id, user_id)
        assert await status_of(session_factory, order_id) == "PENDING"


class TestAdminSetStatus:
    async def test_manual_paid_creates_payment_and_decrements(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)

        order = await OrderService(db).admin_set_status(order_id, OrderStatus.PAID)

        assert order.status == "PAID"
        assert order.payments[0].provider == "manual"
        assert order.payments[0].external_id == f"manual-{order_id}"
        assert await stock_of(session_factory, product_id) == 3

    async def test_refund_restocks(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)

        await service.admin_set_status(order_id, OrderStatus.PAID)
        await service.admin_set_status(order_id, OrderStatus.REFUNDED)

        assert await status_of(session_factory, order_id) == "REFUNDED"
        assert await stock_of(session_factory, product_id) == 5

    async def test_cannot_cancel_paid(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id, status="PAID")

        with pytest.raises(InvalidOrderStateError):
            await OrderService(db).admin_set_status(order_id, OrderStatus.CANCELLED)

    async def test_reopen_failed(self, db, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id, status="FAILED")

        order = await OrderService(db).admin_set_status(order_id, OrderStatus.PENDING)

        assert order.status == "PENDING"

    async def test_manual_paid_runs_on_paid_once(self, db, session_factory, user_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)
        service = OrderService(db)
        paid = []

        async def on_paid(result):
            paid.append(result.order.id)

        await service.admin_set_status(order_id, OrderStatus.PAID, on_paid=on_paid)
        await service.admin_set_status(order_id, OrderStatus.PAID, on_paid=on_paid)

        assert paid == [order_id]
