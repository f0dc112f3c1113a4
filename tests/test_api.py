from storefront.services.notification_service import NotificationService
from tests.factories import auth_headers, make_order, make_product, stock_of


class TestAuth:
    async def test_register_login_me(self, client):
        registered = await client.post(
            "/api/v1/auth/register",
            json={"email": "Nuevo@Example.com", "password": "secret123", "full_name": "Nuevo"},
        )
        assert registered.status_code == 201

        login = await client.post("/api/v1/auth/login", json={"email": "nuevo@example.com", "password": "secret123"})
        assert login.status_code == 200
        token = login.json()["access_token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["email"] == "nuevo@example.com"
        assert me.json()["role"] == "customer"

    async def test_duplicate_email(self, client, user_id):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "cliente@example.com", "password": "secret123"},
        )
        assert response.status_code == 400

    async def test_wrong_password(self, client, user_id):
        response = await client.post("/api/v1/auth/login", json={"email": "cliente@example.com", "password": "nope"})
        assert response.status_code == 401

    async def test_invalid_token(self, client):
        response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401


class TestProducts:
    async def test_list_and_get(self, client, session_factory):
        product_id = await make_product(session_factory, name="Gorra", price="199.50", stock=25)

        listed = await client.get("/api/v1/products")
        assert [p["name"] for p in listed.json()] == ["Gorra"]

        item = await client.get(f"/api/v1/products/{product_id}")
        assert item.json()["price"] == 199.5

        missing = await client.get("/api/v1/products/9999")
        assert missing.status_code == 404


class TestOrders:
    async def test_get_order_with_items_and_payment(self, client, fake_mp, session_factory, user_id):
        product_id = await make_product(session_factory, price="12.73")
        order_id = await make_order(session_factory, user_id, product_id, quantity=2)
        payment_id = fake_mp.add_payment(order_id, "approved", amount="25.46")
        await client.post("/api/v1/payments/webhook", json={"type": "payment", "data": {"id": payment_id}})

        response = await client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(user_id))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "PAID"
        assert data["total_amount"] == 25.46
        assert data["items"][0]["quantity"] == 2
        assert data["payment"]["external_id"] == payment_id
        assert data["payment"]["status"] == "approved"

    async def test_order_is_owner_only(self, client, session_factory, user_id, other_user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, other_user_id, product_id)

        response = await client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(user_id))

        assert response.status_code == 404

    async def test_list_orders(self, client, session_factory, user_id, other_user_id):
        product_id = await make_product(session_factory)
        own = await make_order(session_factory, user_id, product_id)
        await make_order(session_factory, other_user_id, product_id)

        response = await client.get("/api/v1/orders", headers=auth_headers(user_id))

        assert [order["id"] for order in response.json()] == [own]

    async def test_cancel_pending_order(self, client, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)

        response = await client.patch(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers(user_id))

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    async def test_cancel_paid_order_conflict(self, client, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id, status="PAID")

        response = await client.patch(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers(user_id))

        assert response.status_code == 409
        assert response.json()["details"]["status"] == "PAID"

    async def test_payment_status_endpoint(self, client, session_factory, user_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)

        response = await client.get(f"/api/v1/payments/order/{order_id}/status", headers=auth_headers(user_id))

        assert response.json() == {"order_id": order_id, "status": "PENDING", "payment": None}


class TestNotifications:
    async def test_duplicate_suppressed(self, db, user_id):
        service = NotificationService(db)

        first = await service.create(user_id, "PAYMENT", "Pago confirmado", "ok")
        second = await service.create(user_id, "PAYMENT", "Pago confirmado", "ok")

        assert first.id == second.id

    async def test_list_and_mark_read(self, client, db, user_id, other_user_id):
        notification = await NotificationService(db).create(user_id, "PAYMENT", "Pago confirmado", "ok")

        listed = await client.get("/api/v1/notifications", headers=auth_headers(user_id))
        assert [n["id"] for n in listed.json()] == [notification.id]

        foreign = await client.patch(f"/api/v1/notifications/{notification.id}/read", headers=auth_headers(other_user_id))
        assert foreign.status_code == 404

        marked = await client.patch(f"/api/v1/notifications/{notification.id}/read", headers=auth_headers(user_id))
        assert marked.json()["is_read"] is True


class TestAdmin:
    async def test_requires_admin_role(self, client, user_id):
        response = await client.get("/api/v1/admin/orders", headers=auth_headers(user_id))
        assert response.status_code == 403

    async def test_manual_paid_and_payment_listing(self, client, session_factory, user_id, admin_id):
        product_id = await make_product(session_factory, stock=5)
        order_id = await make_order(session_factory, user_id, product_id)

        response = await client.patch(
            f"/api/v1/admin/orders/{order_id}/status",
            json={"status": "PAID"},
            headers=auth_headers(admin_id),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "PAID"
        assert await stock_of(session_factory, product_id) == 3

        payments = await client.get("/api/v1/admin/payments", headers=auth_headers(admin_id))
        assert [p["provider"] for p in payments.json()] == ["manual"]

        notifications = await client.get("/api/v1/notifications", headers=auth_headers(user_id))
        assert sorted(n["title"] for n in notifications.json()) == ["Pago confirmado", "Pedido en preparación"]

        filtered = await client.get("/api/v1/admin/orders?status=PAID", headers=auth_headers(admin_id))
        assert [o["id"] for o in filtered.json()] == [order_id]

    async def test_invalid_transition(self, client, session_factory, user_id, admin_id):
        product_id = await make_product(session_factory)
        order_id = await make_order(session_factory, user_id, product_id)

        response = await client.patch(
            f"/api/v1/admin/orders/{order_id}/status",
            json={"status": "REFUNDED"},
            headers=auth_headers(admin_id),
        )

        assert response.status_code == 409


async def test_health(client):
    response = await client.get("/health")
    assert response.json()["status"] == "ok"
