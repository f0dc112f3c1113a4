import logging

from storefront.services.inventory_service import InventoryService
from tests.factories import make_order, make_product, stock_of


async def test_decrement_subtracts_order_quantity(db, session_factory, user_id):
    product_id = await make_product(session_factory, stock=5)
    order_id = await make_order(session_factory, user_id, product_id, quantity=2)

    changes = await InventoryService(db).decrement_for_order(order_id)
    await db.commit()

    assert [(c.product_id, c.old_stock, c.new_stock) for c in changes] == [(product_id, 5, 3)]
    assert await stock_of(session_factory, product_id) == 3


async def test_decrement_clamps_at_zero_and_logs_oversell(db, session_factory, user_id, caplog):
    product_id = await make_product(session_factory, stock=1)
    order_id = await make_order(session_factory, user_id, product_id, quantity=3)

    with caplog.at_level(logging.WARNING, logger="storefront.services.inventory_service"):
        changes = await InventoryService(db).decrement_for_order(order_id)
    await db.commit()

    assert changes[0].new_stock == 0
    assert changes[0].oversold
    assert await stock_of(session_factory, product_id) == 0
    assert any("Перепродажа" in record.message for record in caplog.records)


async def test_decrement_does_not_commit(db, session_factory, user_id):
    product_id = await make_product(session_factory, stock=5)
    order_id = await make_order(session_factory, user_id, product_id, quantity=2)

    await InventoryService(db).decrement_for_order(order_id)
    await db.rollback()

    assert await stock_of(session_factory, product_id) == 5


async def test_restore_returns_stock(db, session_factory, user_id):
    product_id = await make_product(session_factory, stock=0)
    order_id = await make_order(session_factory, user_id, product_id, quantity=2)

    changes = await InventoryService(db).restore_for_order(order_id)
    await db.commit()

    assert not changes[0].oversold
    assert await stock_of(session_factory, product_id) == 2


async def test_check_availability_reports_issues(db, session_factory):
    in_stock = await make_product(session_factory, name="Gorra", stock=10)
    scarce = await make_product(session_factory, name="Taza", stock=1)

    issues = await InventoryService(db).check_availability({in_stock: 2, scarce: 3, 9999: 1})

    by_product = {issue["product_id"]: issue for issue in issues}
    assert set(by_product) == {scarce, 9999}
    assert by_product[scarce]["issue"] == "insufficient_stock"
    assert by_product[scarce]["available"] == 1
    assert by_product[9999]["issue"] == "not_found"
