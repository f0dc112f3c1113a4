"""Backend мобильного магазина: заказы, оплата MercadoPago, сверка статусов."""
